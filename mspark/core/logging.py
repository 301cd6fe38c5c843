import sys
from loguru import logger
from mspark.core.config import settings


def setup_logging():
    """Console sink plus a rotating file sink, like the old winston setup"""
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)

    settings.log_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        settings.log_dir / "system.log",
        level=settings.log_level,
        rotation="5 MB",
        retention=5,
        enqueue=True,
        backtrace=True,
    )
