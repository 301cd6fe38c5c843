from aiocache import caches
from mspark.core.config import settings


def init_cache(backend: str = None):
    config = {
        "cache": backend or settings.cache_backend,
        "serializer": {
            "class": "aiocache.serializers.JsonSerializer"
        },
        "plugins": []
    }
    if config["cache"] == "aiocache.RedisCache":
        config.update({
            "endpoint": settings.redis_host,
            "port": int(settings.redis_port),
            "db": 3,
        })
    caches.set_config({"default": config})


def get_cache():
    return caches.get("default")
