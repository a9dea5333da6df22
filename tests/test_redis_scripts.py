"""Rotation and revocation scripts executed by a real Lua engine.

Runs against fakeredis by default. Set ``TODOAUTH_TEST_REDIS_URL`` (a
disposable database, it is flushed) to run the same tests against a live
Redis; otherwise the live variant is skipped.
"""

import asyncio
import os

import fakeredis
import pytest
import redis
import redis.asyncio as aioredis

from todoauth.config import Settings
from todoauth.service.errors import TokenValidationError
from todoauth.service.factory import issue_login_tokens
from todoauth.service.signer import KeyRing
from todoauth.service.token_kinds import TokenKind
from todoauth.service.tokens import TokenService
from todoauth.storage.memory import MemoryStore
from todoauth.storage.redis_registry import RedisRegistry

LIVE_REDIS_URL = os.getenv("TODOAUTH_TEST_REDIS_URL")


@pytest.fixture(params=["fake", "live"])
def client(request):
    if request.param == "fake":
        return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    if not LIVE_REDIS_URL:
        pytest.skip("TODOAUTH_TEST_REDIS_URL not set")
    sync_client = redis.Redis.from_url(LIVE_REDIS_URL)
    try:
        sync_client.flushdb()
    except redis.RedisError:
        pytest.skip("Redis not reachable")
    finally:
        sync_client.close()
    return aioredis.from_url(LIVE_REDIS_URL, decode_responses=True)


@pytest.fixture
def registry(client):
    return RedisRegistry("redis://test", operation_timeout=2.0, client=client)


@pytest.fixture(scope="module")
def keys():
    return KeyRing.generate()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def user(store):
    return store.create_user("ada@example.com", "Ada Lovelace")


@pytest.fixture
def tokens(keys, registry, store):
    settings = Settings(test_mode=True, issuer="todoauth-test")
    return TokenService(settings, keys, registry, store)


class TestScripts:
    async def test_rebind_replaces_bound_entry_and_keeps_family_ttl(self, registry, client):
        await registry.set_many([("refresh:J0", "K0", 600), ("access:K0", "J0", 60)])

        assert await registry.rebind("refresh:J0", "access:", "J0", "K1", 900) == "K0"

        assert await client.get("access:K0") is None
        assert await client.get("access:K1") == "J0"
        assert await client.get("refresh:J0") == "K1"
        assert 590 <= await client.ttl("refresh:J0") <= 600
        assert 0 < await client.ttl("access:K1") <= 900

    async def test_rebind_of_missing_family_returns_none_and_writes_nothing(
        self, registry, client
    ):
        assert await registry.rebind("refresh:J0", "access:", "J0", "K1", 900) is None
        assert await client.keys("*") == []

    async def test_unbind_removes_family_and_bound_entry(self, registry, client):
        await registry.set_many([("refresh:J0", "K0", 600), ("access:K0", "J0", 60)])
        assert await registry.unbind("refresh:J0", "access:") == "K0"
        assert await client.keys("*") == []
        assert await registry.unbind("refresh:J0", "access:") is None


class TestEngineOnRedis:
    async def test_rotation_replay_and_logout(self, tokens, client, user):
        issued = await issue_login_tokens(tokens, user)
        a1 = await tokens.rotate(issued.rjti, user.id)

        with pytest.raises(TokenValidationError):
            await tokens.verify(issued.access_token.token, TokenKind.ACCESS)
        assert (await tokens.verify(a1.token, TokenKind.ACCESS)).jti == a1.jti
        assert (await tokens.verify(issued.refresh_token.token, TokenKind.REFRESH)).rjti == (
            issued.rjti
        )

        await tokens.revoke(issued.rjti)
        assert await client.keys("*") == []
        with pytest.raises(TokenValidationError):
            await tokens.verify(a1.token, TokenKind.ACCESS)
        with pytest.raises(TokenValidationError):
            await tokens.revoke(issued.rjti)

    async def test_concurrent_rotations_leave_one_valid_binding(self, tokens, client, user):
        issued = await issue_login_tokens(tokens, user)
        first, second = await asyncio.gather(
            tokens.rotate(issued.rjti, user.id),
            tokens.rotate(issued.rjti, user.id),
        )

        valid = []
        for response in (issued.access_token, first, second):
            try:
                await tokens.verify(response.token, TokenKind.ACCESS)
                valid.append(response.jti)
            except TokenValidationError:
                pass
        assert len(valid) == 1
        assert await client.keys("access:*") == [f"access:{valid[0]}"]
        assert await client.get(f"refresh:{issued.rjti}") == valid[0]
