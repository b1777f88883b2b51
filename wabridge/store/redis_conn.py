from redis import Redis
from wabridge.settings import settings


def get_redis(decode_responses: bool = True) -> Redis:
    # Blob payloads are raw bytes; callers storing them ask for decode_responses=False
    return Redis.from_url(settings.REDIS_URL, decode_responses=decode_responses)
