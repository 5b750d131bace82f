"""
Service wiring.
Every service is constructed once from the resolved Settings; server.py keeps
the container on app.state and routes read it from there.
"""
import logging
from datetime import timedelta

from config import Settings
from utils.rate_limiter import RateLimiter
from econtract.cache.kv_store import KeyValueStore
from econtract.repositories.base import ContractRepository
from econtract.repositories.certificates import CertificateRepository
from econtract.repositories.factory import (
    create_certificate_repository,
    create_contract_repository,
    create_kv_store,
)
from econtract.services.audit_service import ContractAuditService
from econtract.services.certificate_renderer import CertificateRenderer
from econtract.services.certificate_service import CertificateService
from econtract.services.contract_service import ContractService
from econtract.services.notification_service import NotificationService
from econtract.services.side_effects import SideEffectQueue
from econtract.services.signature_factory import SignatureFactory
from econtract.services.signature_token import SignatureTokenService
from econtract.services.signing_service import SigningService
from econtract.services.verification_hash import VerificationHasher
from econtract.services.viewer_access import ViewerAccessService

logger = logging.getLogger(__name__)


class ServiceContainer:
    def __init__(
        self,
        settings: Settings,
        kv_store: KeyValueStore,
        contract_repository: ContractRepository,
        certificate_repository: CertificateRepository,
        side_effects: SideEffectQueue,
        rate_limiter: RateLimiter,
        audit_service: ContractAuditService,
        contract_service: ContractService,
        signing_service: SigningService,
        certificate_service: CertificateService,
        viewer_service: ViewerAccessService,
    ):
        self.settings = settings
        self.kv_store = kv_store
        self.contract_repository = contract_repository
        self.certificate_repository = certificate_repository
        self.side_effects = side_effects
        self.rate_limiter = rate_limiter
        self.audit_service = audit_service
        self.contract_service = contract_service
        self.signing_service = signing_service
        self.certificate_service = certificate_service
        self.viewer_service = viewer_service


def build_services(settings: Settings, db=None) -> ServiceContainer:
    kv_store = create_kv_store(settings, db)
    contract_repository = create_contract_repository(settings, kv_store, db)
    certificate_repository = create_certificate_repository(settings, kv_store, db)

    side_effects = SideEffectQueue(max_attempts=settings.side_effect_max_attempts)
    rate_limiter = RateLimiter(kv_store, enabled=settings.rate_limit_enabled)
    audit_service = ContractAuditService(db if settings.storage_backend == "mongo" else None)

    hasher = VerificationHasher(settings.signing_secret)
    token_service = SignatureTokenService(settings.signing_secret)

    contract_service = ContractService(contract_repository, audit_service, side_effects)
    signing_service = SigningService(
        contract_service=contract_service,
        token_service=token_service,
        signature_factory=SignatureFactory(hasher),
        hasher=hasher,
        kv_store=kv_store,
        rate_limiter=rate_limiter,
        notifier=NotificationService(settings.postmark_server_token, settings.email_sender),
        side_effects=side_effects,
        contract_domain=settings.contract_domain,
        signature_ttl=timedelta(hours=settings.signature_expiry_hours),
        request_rate_limit=settings.sign_request_rate_limit,
        submit_rate_limit=settings.sign_submit_rate_limit,
        rate_limit_window_seconds=settings.rate_limit_window_seconds,
    )
    certificate_service = CertificateService(
        contract_service=contract_service,
        signing_service=signing_service,
        repository=certificate_repository,
        renderer=CertificateRenderer(),
        issuer_name=settings.certificate_issuer_name,
        issuer_company=settings.certificate_issuer_company,
    )
    contract_service.add_completion_listener(certificate_service.issue_for_completed_contract)

    viewer_service = ViewerAccessService(
        contract_service=contract_service,
        token_service=token_service,
        kv_store=kv_store,
        session_secret=settings.signing_secret,
        contract_domain=settings.contract_domain,
        link_ttl=timedelta(hours=settings.viewer_link_expiry_hours),
        session_ttl=timedelta(hours=settings.viewer_session_expiry_hours),
    )

    logger.info(
        f"Services ready (storage={settings.storage_backend}, cache={settings.cache_backend}, "
        f"environment={settings.environment})"
    )
    return ServiceContainer(
        settings=settings,
        kv_store=kv_store,
        contract_repository=contract_repository,
        certificate_repository=certificate_repository,
        side_effects=side_effects,
        rate_limiter=rate_limiter,
        audit_service=audit_service,
        contract_service=contract_service,
        signing_service=signing_service,
        certificate_service=certificate_service,
        viewer_service=viewer_service,
    )
