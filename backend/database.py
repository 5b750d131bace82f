from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path
from contextlib import asynccontextmanager

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)


class Database:
    client: AsyncIOMotorClient = None
    db = None

    async def connect(self, mongo_url: str = None, db_name: str = None):
        mongo_url = mongo_url or os.environ['MONGO_URL']
        db_name = db_name or os.environ.get('DB_NAME', 'econtract')
        try:
            # tz_aware so stored datetimes come back as UTC-aware values
            self.client = AsyncIOMotorClient(mongo_url, tz_aware=True)
            self.db = self.client[db_name]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {db_name}")

            await self._create_indexes()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def get_db(self):
        return self.db

    async def _create_indexes(self):
        """Create MongoDB indexes for contract lookups and uniqueness guarantees."""
        try:
            # Contracts
            await self.db.contracts.create_index("contract_id", unique=True)
            await self.db.contracts.create_index("status")
            await self.db.contracts.create_index([("created_at", -1)])
            await self.db.contracts.create_index([("status", 1), ("signature_expires_at", 1)])

            # One certificate per contract
            await self.db.certificates.create_index("contract_id", unique=True)

            # Key-value entries: token consumption, rate-limit counters
            await self.db.kv_entries.create_index("key", unique=True)
            await self.db.kv_entries.create_index("expires_at", expireAfterSeconds=0)

            # Audit trail - timeline per contract
            await self.db.contract_audit_logs.create_index([("contract_id", 1), ("performed_at", 1)])
            await self.db.contract_audit_logs.create_index("action")
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist, log but don't fail
            logger.warning(f"Index creation note: {e}")


# Global database instance
database = Database()


@asynccontextmanager
async def get_db_context(mongo_url: str = None, db_name: str = None):
    """Context manager for standalone scripts to access the database.

    Usage in scripts:
        async with get_db_context(settings.mongo_url, settings.db_name) as db:
            await db.contracts.find_one(...)
    """
    client = None
    try:
        mongo_url = mongo_url or os.environ["MONGO_URL"]
        db_name = db_name or os.environ.get("DB_NAME", "econtract")
        client = AsyncIOMotorClient(mongo_url, tz_aware=True)
        db = client[db_name]
        # Verify connection
        await db.command("ping")
        logger.info(f"Script connected to MongoDB: {db_name}")
        yield db
    finally:
        if client:
            client.close()
            logger.info("Script MongoDB connection closed")
