"""Tests for the WorkspaceError hierarchy and classification utilities."""

from unittest.mock import Mock

import aiohttp
import pytest

from synapse_core.errors.exceptions import (
    AuthenticationError,
    ClientRequestError,
    ConfigurationError,
    ConnectionError,
    TransientError,
    WorkspaceError,
    classify_exception,
    classify_http_status,
    error_for_status,
    get_status_code,
    is_client_status,
    is_retryable_error,
    wrap_exception,
)
from synapse_core.types import ErrorCategory


class TestHierarchy:

    def test_categories(self):
        assert AuthenticationError("x").category == ErrorCategory.AUTH
        assert TransientError("x").category == ErrorCategory.TRANSIENT
        assert ConnectionError("x").category == ErrorCategory.TRANSIENT
        assert ClientRequestError("x").category == ErrorCategory.PERMANENT
        assert ConfigurationError("x").category == ErrorCategory.PERMANENT

    def test_subclass_relationships(self):
        assert issubclass(ConnectionError, TransientError)
        assert issubclass(ConfigurationError, ClientRequestError)
        assert all(
            issubclass(cls, WorkspaceError)
            for cls in (AuthenticationError, TransientError, ClientRequestError)
        )

    def test_client_request_error_defaults_to_400(self):
        assert ClientRequestError("bad").status_code == 400
        assert ClientRequestError("gone", status_code=404).status_code == 404

    def test_str_includes_cause(self):
        error = TransientError("Query failed", cause=ValueError("socket closed"))
        assert str(error) == "Query failed | Caused by: socket closed"

    def test_context_and_request_id(self):
        error = WorkspaceError("x", context={"tenant": "acme"}, request_id="req-1")
        assert error.context == {"tenant": "acme"}
        assert error.request_id == "req-1"

    def test_is_retryable(self):
        assert TransientError("x").is_retryable is True
        assert AuthenticationError("x").is_retryable is True
        assert ClientRequestError("x").is_retryable is False
        assert ConnectionError("login", status_code=401).is_retryable is False
        assert TransientError("x", status_code=503).is_retryable is True

    def test_should_refresh_auth(self):
        assert AuthenticationError("x").should_refresh_auth is True
        assert ConnectionError("login", status_code=401).should_refresh_auth is True
        assert TransientError("x").should_refresh_auth is False


class TestStatusHelpers:

    @pytest.mark.parametrize("status, expected", [(400, True), (404, True), (499, True), (500, False), (200, False), (None, False)])
    def test_is_client_status(self, status, expected):
        assert is_client_status(status) is expected

    def test_get_status_code_reads_known_attributes(self):
        assert get_status_code(TransientError("x", status_code=502)) == 502
        error = aiohttp.ClientResponseError(request_info=Mock(), history=(), status=429)
        assert get_status_code(error) == 429

        azure_like = Exception("http")
        azure_like.status_code = 409
        assert get_status_code(azure_like) == 409

    def test_get_status_code_ignores_non_int(self):
        error = Exception("x")
        error.status = "bad"
        assert get_status_code(error) is None
        assert get_status_code(ValueError("plain")) is None

    @pytest.mark.parametrize(
        "status, category",
        [
            (404, ErrorCategory.PERMANENT),
            (401, ErrorCategory.PERMANENT),
            (500, ErrorCategory.TRANSIENT),
            (503, ErrorCategory.TRANSIENT),
            (200, ErrorCategory.UNKNOWN),
        ],
    )
    def test_classify_http_status(self, status, category):
        assert classify_http_status(status) == category


class TestClassifyException:

    def test_workspace_error_uses_category(self):
        assert classify_exception(TransientError("x")) == ErrorCategory.TRANSIENT

    def test_workspace_error_with_client_status_is_permanent(self):
        assert classify_exception(ConnectionError("x", status_code=401)) == ErrorCategory.PERMANENT

    def test_os_errors_are_transient(self):
        assert classify_exception(OSError("reset")) == ErrorCategory.TRANSIENT
        assert classify_exception(TimeoutError()) == ErrorCategory.TRANSIENT

    def test_markers(self):
        assert classify_exception(RuntimeError("Connection reset by peer")) == ErrorCategory.TRANSIENT
        assert classify_exception(RuntimeError("AADSTS700016: app not found")) == ErrorCategory.AUTH
        assert classify_exception(RuntimeError("weird")) == ErrorCategory.UNKNOWN


class TestIsRetryableError:

    def test_client_status_is_final(self):
        error = Exception("x")
        error.status_code = 404
        assert is_retryable_error(error) is False

    def test_unclassified_is_retried(self):
        assert is_retryable_error(RuntimeError("weird")) is True

    def test_workspace_errors(self):
        assert is_retryable_error(ClientRequestError("x")) is False
        assert is_retryable_error(TransientError("x")) is True


class TestErrorForStatus:

    def test_4xx_is_client_request_error(self):
        error = error_for_status(404, "not found", request_id="req-9")
        assert isinstance(error, ClientRequestError)
        assert error.status_code == 404
        assert error.request_id == "req-9"

    def test_5xx_is_transient(self):
        error = error_for_status(503, "busy")
        assert type(error) is TransientError
        assert error.status_code == 503


class TestWrapException:

    def test_passthrough_merges_context(self):
        original = TransientError("x", context={"a": 1})
        wrapped = wrap_exception(original, context={"b": 2})
        assert wrapped is original
        assert original.context == {"a": 1, "b": 2}

    def test_status_bearing_exception(self):
        error = Exception("conflict")
        error.status_code = 409
        wrapped = wrap_exception(error)
        assert isinstance(wrapped, ClientRequestError)
        assert wrapped.cause is error

    def test_auth_marker(self):
        wrapped = wrap_exception(RuntimeError("token expired"))
        assert isinstance(wrapped, AuthenticationError)

    def test_unknown_uses_default_class(self):
        wrapped = wrap_exception(RuntimeError("odd"), default_class=ConfigurationError)
        assert isinstance(wrapped, ConfigurationError)
        assert wrapped.context["error_type"] == "RuntimeError"
