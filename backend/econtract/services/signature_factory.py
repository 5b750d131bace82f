"""
Signature Factory
Assembles a Signature record from raw signing input. Pure: it performs no
validation (party existence and duplicate checks belong to the signing
workflow) and no persistence.
"""

import hashlib
import re
from datetime import datetime
from typing import Callable, Optional, Tuple

from utils.timestamps import truncate_to_millis, ensure_utc, utc_now
from econtract.models.signature import Signature
from econtract.services.contract_hash import generate_certificate_id
from econtract.services.verification_hash import VerificationHasher

DATA_URL_PREFIX = re.compile(r"^data:image/\w+;base64,")


def process_signature_image(data: str) -> Tuple[str, str]:
    """Strip any data-URL prefix and hash the remaining base64 text.

    Returns (base64_data, sha256_hex).
    """
    base64_data = DATA_URL_PREFIX.sub("", data, count=1)
    return base64_data, hashlib.sha256(base64_data.encode("utf-8")).hexdigest()


class SignatureFactory:
    def __init__(self, hasher: VerificationHasher, clock: Callable[[], datetime] = utc_now):
        self._hasher = hasher
        self._clock = clock

    def create_signature(
        self,
        contract_id: str,
        party_id: str,
        ip_address: str,
        user_agent: str,
        signature_image_data: Optional[str] = None,
    ) -> Signature:
        signed_at = truncate_to_millis(ensure_utc(self._clock()))

        image_data = None
        image_hash = None
        if signature_image_data:
            image_data, image_hash = process_signature_image(signature_image_data)

        verification_hash = self._hasher.compute(
            contract_id, party_id, signed_at, ip_address, user_agent
        )

        draft = Signature(
            party_id=party_id,
            signed_at=signed_at,
            ip_address=ip_address,
            user_agent=user_agent,
            verification_hash=verification_hash,
            certificate_id="",
            signature_data=image_data,
            signature_image_hash=image_hash,
        )
        return draft.model_copy(update={"certificate_id": generate_certificate_id(draft)})
