from datetime import datetime, timezone

from redis.exceptions import ConnectionError as RedisConnectionError

from waste_rewards.services.redis_service import ADVICE_PREFIX, REVOKED_PREFIX, RedisService


class FakeRedisClient:
    def __init__(self, fail=False):
        self.values = {}
        self.fail = fail

    async def get(self, key):
        if self.fail:
            raise RedisConnectionError("gone")
        return self.values.get(key)

    async def setex(self, key, ttl, value):
        if self.fail:
            raise RedisConnectionError("gone")
        self.values[key] = value

    async def ping(self):
        if self.fail:
            raise RedisConnectionError("gone")
        return True


def _service(client) -> RedisService:
    service = RedisService("redis://fake:6379")
    service.redis_client = client
    service.is_connected = True
    return service


async def test_disabled_without_url():
    service = RedisService("")
    assert await service.connect() is False
    assert service.is_connected is False
    assert await service.get("k") is None
    assert await service.set("k", 1) is False
    assert await service.is_session_revoked("jti") is False
    assert await service.health_check() == {"status": "disabled"}


async def test_session_revocation_round_trip():
    client = FakeRedisClient()
    service = _service(client)
    assert await service.revoke_session("abc", ttl=120) is True
    assert f"{REVOKED_PREFIX}abc" in client.values
    assert await service.is_session_revoked("abc") is True
    assert await service.is_session_revoked("other") is False


async def test_advice_cache_and_datetime_serialisation():
    client = FakeRedisClient()
    service = _service(client)
    await service.cache_advice("key", "Bag it.", ttl=60)
    assert await service.get_cached_advice("key") == "Bag it."
    assert f"{ADVICE_PREFIX}key" in client.values

    await service.set("when", {"at": datetime(2024, 1, 2, tzinfo=timezone.utc)})
    assert await service.get("when") == {"at": "2024-01-02T00:00:00+00:00"}


async def test_errors_degrade_to_misses():
    service = _service(FakeRedisClient(fail=True))
    assert await service.get("k") is None
    assert await service.set("k", 1) is False
    assert (await service.health_check())["status"] == "error"
