from tortoise import Tortoise
from loguru import logger
from mspark.core.config import settings

TORTOISE_MODULES = {"models": ["mspark.models"]}


class DatabaseManager:
    @staticmethod
    async def init(db_url: str = None):
        """Initialize database connections and schema"""
        await Tortoise.init(
            db_url=db_url or settings.database_url,
            modules=TORTOISE_MODULES,
            use_tz=True,
            timezone="UTC",
        )
        await Tortoise.generate_schemas(safe=True)
        logger.info("✅ Database schema initialized")

    @staticmethod
    async def close():
        """Close database connections"""
        await Tortoise.close_connections()
        logger.info("🛑 Database connections closed")
