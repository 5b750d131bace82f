"""
Signature request expiry sweep.
Moves pending_signature contracts whose signing link has lapsed to expired.
Safe to run repeatedly (cron); each expiry is audited.

Usage (from backend/):
  python -m scripts.expire_signature_requests [--dry-run]
"""
import argparse
import asyncio
import sys
from pathlib import Path

# Ensure backend root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def sweep(settings, db, dry_run: bool = False):
    from econtract.models.contract import ContractStatus
    from econtract.models.query import ContractFilter
    from econtract.services.container import build_services
    from utils.timestamps import utc_now

    services = build_services(settings, db)
    if dry_run:
        now = utc_now()
        pending = await services.contract_repository.search(
            ContractFilter(status=[ContractStatus.PENDING_SIGNATURE.value])
        )
        overdue = [
            c.contract_id for c in pending
            if c.signature_expires_at is not None and c.signature_expires_at <= now
        ]
        logger.info(f"Dry run: {len(overdue)} contract(s) would expire: {overdue}")
        return overdue

    expired = await services.contract_service.expire_overdue_signature_requests()
    await services.side_effects.drain()
    logger.info(f"Expired {len(expired)} contract(s)")
    for contract_id in expired:
        print(contract_id)
    return expired


async def main(dry_run: bool = False):
    from config import get_settings
    from database import get_db_context

    settings = get_settings()
    if not settings.uses_mongo:
        return await sweep(settings, None, dry_run)

    async with get_db_context(settings.mongo_url, settings.db_name) as db:
        return await sweep(settings, db, dry_run)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Expire lapsed signature requests")
    parser.add_argument("--dry-run", action="store_true", help="List overdue contracts without changing them")
    args = parser.parse_args()
    asyncio.run(main(dry_run=args.dry_run))
