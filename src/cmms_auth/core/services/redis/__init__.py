from .redis_service import RedisService

__all__ = ["RedisService"]
