import pytest
from jose import jwt

from waste_rewards.core.errors import AuthenticationError
from waste_rewards.services.identity_service import ALGORITHM, IdentityService
from waste_rewards.services.redis_service import RedisService

SECRET = "identity-test-secret"


class FakeRedisClient:
    def __init__(self):
        self.values = {}
        self.ttls = {}

    async def get(self, key):
        return self.values.get(key)

    async def setex(self, key, ttl, value):
        self.values[key] = value
        self.ttls[key] = ttl

    async def ping(self):
        return True


def connected_redis() -> RedisService:
    service = RedisService("redis://fake:6379")
    service.redis_client = FakeRedisClient()
    service.is_connected = True
    return service


async def test_sign_in_issues_verifiable_session():
    identity = IdentityService(SECRET)
    session = await identity.sign_in_anonymously()

    assert session.user_id
    assert await identity.verify(session.token) == session.user_id
    claims = jwt.decode(session.token, SECRET, algorithms=[ALGORITHM])
    assert claims["anon"] is True and claims["sub"] == session.user_id


async def test_each_sign_in_gets_a_new_user():
    identity = IdentityService(SECRET)
    first = await identity.sign_in_anonymously()
    second = await identity.sign_in_anonymously()
    assert first.user_id != second.user_id


async def test_listeners_follow_sign_in_and_sign_out():
    identity = IdentityService(SECRET)
    seen = []
    unsubscribe = identity.on_auth_state_changed(seen.append)

    session = await identity.sign_in_anonymously()
    await identity.sign_out(session.token)
    assert seen == [session.user_id, None]

    unsubscribe()
    await identity.sign_in_anonymously()
    assert len(seen) == 2


async def test_failing_listener_does_not_break_others():
    identity = IdentityService(SECRET)
    seen = []

    def broken(_user_id):
        raise RuntimeError("listener bug")

    identity.on_auth_state_changed(broken)
    identity.on_auth_state_changed(seen.append)
    session = await identity.sign_in_anonymously()
    assert seen == [session.user_id]


async def test_signed_out_token_is_rejected_in_process():
    identity = IdentityService(SECRET)
    session = await identity.sign_in_anonymously()
    await identity.sign_out(session.token)

    with pytest.raises(AuthenticationError):
        await identity.verify(session.token)


async def test_signed_out_token_is_rejected_across_workers_with_redis():
    redis = connected_redis()
    worker_a = IdentityService(SECRET, redis_service=redis)
    worker_b = IdentityService(SECRET, redis_service=redis)

    session = await worker_a.sign_in_anonymously()
    await worker_a.sign_out(session.token)

    with pytest.raises(AuthenticationError):
        await worker_b.verify(session.token)
    ttl = next(iter(redis.redis_client.ttls.values()))
    assert 0 < ttl <= 60 * 24 * 30 * 60


@pytest.mark.parametrize("token", [None, "", "not-a-jwt"])
async def test_invalid_tokens(token):
    with pytest.raises(AuthenticationError):
        await IdentityService(SECRET).verify(token)


async def test_token_signed_with_other_key_is_rejected():
    session = await IdentityService("someone-else").sign_in_anonymously()
    with pytest.raises(AuthenticationError):
        await IdentityService(SECRET).verify(session.token)


async def test_expired_token_is_rejected():
    identity = IdentityService(SECRET, ttl_minutes=-1)
    session = await identity.sign_in_anonymously()
    with pytest.raises(AuthenticationError) as excinfo:
        await identity.verify(session.token)
    assert "expired" in excinfo.value.message
