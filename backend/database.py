from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None

    async def connect(self):
        try:
            mongo_url = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
            db_name = os.environ.get('DB_NAME', 'forgetsubs')
            self.client = AsyncIOMotorClient(mongo_url)
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
        """Create MongoDB indexes for the referral ledger."""
        try:
            # Referral users - one row per wallet, lowercase address
            await self.db.users.create_index("address", unique=True)
            await self.db.users.create_index("referral_code", unique=True)
            await self.db.users.create_index([("successful_refers", -1)])

            # Referral reward idempotency - a (tx_hash, chain_id) pair credits at most once
            await self.db.claimed_tx.create_index([("tx_hash", 1), ("chain_id", 1)], unique=True)

            await self.db.successful_referrals.create_index("referrer_address")
            await self.db.successful_referrals.create_index([("tx_hash", 1), ("chain_id", 1)])

            await self.db.withdrawals.create_index("withdrawal_id", unique=True)
            await self.db.withdrawals.create_index([("user_address", 1), ("created_at", -1)])
            await self.db.withdrawals.create_index("status")
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist, log but don't fail
            logger.warning(f"Index creation note: {e}")

# Global database instance
database = Database()
