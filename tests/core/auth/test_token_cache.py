"""Tests for the expiry-aware bearer token cache."""

import asyncio
import gc
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from synapse_core.auth.credentials import AcquiredToken, CredentialStrategy, CredentialType
from synapse_core.auth.token_cache import (
    SQL_SCOPE,
    WORKSPACE_SCOPE,
    CachedToken,
    TokenCache,
)
from synapse_core.errors.exceptions import AuthenticationError

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeAccessToken:
    def __init__(self, token, expires_on):
        self.token = token
        self.expires_on = expires_on


def _strategy(*tokens, expires_in=3600):
    """Strategy whose credential returns the given tokens in order."""
    credential = AsyncMock()
    credential.get_token.side_effect = [
        FakeAccessToken(token, int((NOW + timedelta(seconds=expires_in)).timestamp()) if expires_in else 0)
        for token in tokens
    ]
    return CredentialStrategy(CredentialType.MANAGED_IDENTITY, credential), credential


@pytest.fixture
def frozen_now():
    with patch("synapse_core.auth.token_cache._now", return_value=NOW) as now:
        yield now


# =============================================================================
# CachedToken
# =============================================================================


class TestCachedToken:

    def test_valid_when_outside_buffer(self, frozen_now):
        token = CachedToken("t", NOW + timedelta(minutes=10))
        assert token.is_valid(300) is True

    def test_invalid_inside_buffer(self, frozen_now):
        token = CachedToken("t", NOW + timedelta(minutes=4))
        assert token.is_valid(300) is False

    def test_invalid_when_expired(self, frozen_now):
        token = CachedToken("t", NOW - timedelta(seconds=1))
        assert token.is_valid(0) is False

    def test_token_without_expiry_is_never_valid(self, frozen_now):
        token = CachedToken("t", None)
        assert token.is_valid(0) is False
        assert token.seconds_until_expiry() is None


# =============================================================================
# TokenCache
# =============================================================================


class TestTokenCache:

    @pytest.mark.asyncio
    async def test_two_calls_within_validity_acquire_once(self, frozen_now):
        strategy, credential = _strategy("tok-1", "tok-2")
        cache = TokenCache(strategy, scope=WORKSPACE_SCOPE, name="acme")

        assert await cache.get_access_token() == "tok-1"
        assert await cache.get_access_token() == "tok-1"
        credential.get_token.assert_awaited_once_with(WORKSPACE_SCOPE)

    @pytest.mark.asyncio
    async def test_forced_expiry_triggers_new_acquisition(self, frozen_now):
        strategy, credential = _strategy("tok-1", "tok-2")
        cache = TokenCache(strategy, name="acme")

        assert await cache.get_access_token() == "tok-1"
        # Move the clock to within the 5 minute buffer
        frozen_now.return_value = NOW + timedelta(seconds=3600 - 299)

        assert await cache.get_access_token() == "tok-2"
        assert credential.get_token.await_count == 2

    @pytest.mark.asyncio
    async def test_token_without_expiry_is_reacquired(self, frozen_now):
        strategy, credential = _strategy("tok-1", "tok-2", expires_in=None)
        cache = TokenCache(strategy, name="acme")

        assert await cache.get_access_token() == "tok-1"
        assert await cache.get_access_token() == "tok-2"
        assert credential.get_token.await_count == 2

    @pytest.mark.asyncio
    async def test_failure_raises_authentication_error_and_clears(self, frozen_now):
        credential = AsyncMock()
        credential.get_token.side_effect = RuntimeError("CredentialUnavailableError")
        cache = TokenCache(CredentialStrategy(CredentialType.AZURE_CLI, credential), name="acme")

        with pytest.raises(AuthenticationError) as exc_info:
            await cache.get_access_token()

        assert isinstance(exc_info.value.cause, RuntimeError)
        assert exc_info.value.context["tenant"] == "acme"
        assert cache.get_token_info()["has_token"] is False

    @pytest.mark.asyncio
    async def test_failure_after_success_drops_cached_token(self, frozen_now):
        credential = AsyncMock()
        expires = int((NOW + timedelta(hours=1)).timestamp())
        credential.get_token.side_effect = [FakeAccessToken("tok-1", expires), RuntimeError("down")]
        cache = TokenCache(CredentialStrategy(CredentialType.DEFAULT, credential), name="acme")

        await cache.get_access_token()
        with pytest.raises(AuthenticationError):
            await cache.refresh_token()

        assert cache.get_token_info()["has_token"] is False

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_acquisition(self, frozen_now):
        release = asyncio.Event()
        expires = int((NOW + timedelta(hours=1)).timestamp())

        async def slow_get_token(scope):
            await release.wait()
            return FakeAccessToken("shared", expires)

        credential = AsyncMock()
        credential.get_token.side_effect = slow_get_token
        cache = TokenCache(CredentialStrategy(CredentialType.DEFAULT, credential), name="acme")

        tasks = [asyncio.create_task(cache.get_access_token()) for _ in range(5)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks)

        assert results == ["shared"] * 5
        credential.get_token.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_after_all_waiters_cancelled_is_not_reported(self, frozen_now):
        release = asyncio.Event()

        async def failing_get_token(scope):
            await release.wait()
            raise RuntimeError("IMDS unreachable")

        credential = AsyncMock()
        credential.get_token.side_effect = failing_get_token
        cache = TokenCache(CredentialStrategy(CredentialType.MANAGED_IDENTITY, credential), name="acme")
        loop = asyncio.get_running_loop()
        reported = []
        loop.set_exception_handler(lambda _loop, context: reported.append(context))
        try:
            waiter = asyncio.create_task(cache.get_access_token())
            await asyncio.sleep(0)
            waiter.cancel()
            with pytest.raises(asyncio.CancelledError):
                await waiter

            release.set()
            for _ in range(5):
                await asyncio.sleep(0)
            gc.collect()
        finally:
            loop.set_exception_handler(None)

        assert reported == []
        assert cache.get_token_info()["has_token"] is False

    @pytest.mark.asyncio
    async def test_refresh_token_always_reacquires(self, frozen_now):
        strategy, credential = _strategy("tok-1", "tok-2")
        cache = TokenCache(strategy, name="acme")

        await cache.get_access_token()
        assert await cache.refresh_token() == "tok-2"
        assert credential.get_token.await_count == 2

    @pytest.mark.asyncio
    async def test_clear_cache_forces_reacquisition(self, frozen_now):
        strategy, credential = _strategy("tok-1", "tok-2")
        cache = TokenCache(strategy, name="acme")

        await cache.get_access_token()
        cache.clear_cache()

        assert await cache.get_access_token() == "tok-2"

    @pytest.mark.asyncio
    async def test_authorization_header(self, frozen_now):
        strategy, _ = _strategy("tok-1")
        cache = TokenCache(strategy, scope=SQL_SCOPE, name="acme")

        assert await cache.get_authorization_header() == "Bearer tok-1"
        assert cache.scope == SQL_SCOPE

    @pytest.mark.asyncio
    async def test_get_token_info_never_contains_token(self, frozen_now):
        strategy, _ = _strategy("secret-token-value")
        cache = TokenCache(strategy, name="acme")

        await cache.get_access_token()
        info = cache.get_token_info()

        assert info["has_token"] is True
        assert info["is_valid"] is True
        assert info["seconds_until_expiry"] == 3600.0
        assert "secret-token-value" not in str(info)

    @pytest.mark.asyncio
    async def test_acquisition_log_omits_token(self, frozen_now, caplog):
        strategy, _ = _strategy("secret-token-value")
        cache = TokenCache(strategy, name="acme")

        with caplog.at_level("INFO", logger="synapse_core.auth.token_cache"):
            await cache.get_access_token()

        record = next(r for r in caplog.records if r.getMessage() == "Token acquired")
        assert record.outcome == "success"
        assert record.tenant == "acme"
        assert "duration_ms" in record.__dict__
        assert "secret-token-value" not in caplog.text

    @pytest.mark.asyncio
    async def test_validate_credential(self, frozen_now):
        strategy, _ = _strategy("tok-1")
        assert await TokenCache(strategy).validate_credential() is True

        credential = AsyncMock()
        credential.get_token.side_effect = RuntimeError("no identity")
        failing = TokenCache(CredentialStrategy(CredentialType.MANAGED_IDENTITY, credential))
        assert await failing.validate_credential() is False

    @pytest.mark.asyncio
    async def test_time_until_expiry(self, frozen_now):
        strategy, _ = _strategy("tok-1")
        cache = TokenCache(strategy)
        assert cache.time_until_expiry() is None

        await cache.get_access_token()
        assert cache.time_until_expiry() == timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_aclose_closes_credential(self, frozen_now):
        strategy, credential = _strategy("tok-1")
        cache = TokenCache(strategy)

        await cache.aclose()

        credential.close.assert_awaited_once()
