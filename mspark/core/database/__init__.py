from .database import DatabaseManager, TORTOISE_MODULES
