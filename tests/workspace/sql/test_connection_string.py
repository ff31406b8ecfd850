"""Tests for connection string parsing and session parameters."""

import pytest

from synapse_core.errors.exceptions import ConfigurationError
from synapse_workspace.sql.connection_string import (
    AuthKind,
    ConnectionDescriptor,
    SessionParameters,
    parse_connection_string,
)


class TestParseConnectionString:

    def test_synapse_dedicated_string(self):
        descriptor = parse_connection_string(
            "Server=tcp:acme-synapse.sql.azuresynapse.net,1433;Initial Catalog=dw01;"
            "Authentication=ActiveDirectoryDefault;Encrypt=True;TrustServerCertificate=False;"
            "Connection Timeout=45"
        )

        assert descriptor.host == "acme-synapse.sql.azuresynapse.net"
        assert descriptor.port == 1433
        assert descriptor.database == "dw01"
        assert descriptor.authentication == "ActiveDirectoryDefault"
        assert descriptor.encrypt is True
        assert descriptor.trust_server_certificate is False
        assert descriptor.connect_timeout == 45

    def test_defaults(self):
        descriptor = parse_connection_string("Server=acme.sql.azuresynapse.net")

        assert descriptor.port == 1433
        assert descriptor.database == ""
        assert descriptor.encrypt is True
        assert descriptor.connect_timeout is None

    def test_keys_are_case_insensitive_and_aliased(self):
        descriptor = parse_connection_string("DATA SOURCE=host,1444;DATABASE=db;UID=svc;PWD=secret")

        assert (descriptor.host, descriptor.port) == ("host", 1444)
        assert descriptor.user == "svc"
        assert descriptor.password == "secret"

    def test_braced_values(self):
        descriptor = parse_connection_string("Server=host;Database=db;Password={p;a}}ss=};User ID=svc")

        assert descriptor.password == "p;a}ss="
        assert descriptor.user == "svc"

    def test_password_not_in_repr(self):
        descriptor = parse_connection_string("Server=host;User ID=svc;Password=hunter2")
        assert "hunter2" not in repr(descriptor)

    @pytest.mark.parametrize(
        "text",
        ["", "Database=dw01", "Server=;Database=dw01", "Server=tcp:"],
    )
    def test_missing_server_raises(self, text):
        with pytest.raises(ConfigurationError, match="no Server"):
            parse_connection_string(text)

    def test_bad_port_raises(self):
        with pytest.raises(ConfigurationError, match="Invalid port"):
            parse_connection_string("Server=host,abc")

    def test_bad_timeout_raises(self):
        with pytest.raises(ConfigurationError, match="Invalid connection timeout"):
            parse_connection_string("Server=host;Connection Timeout=soon")


class TestAuthKind:

    @pytest.mark.parametrize(
        "authentication, user, password, expected",
        [
            ("ActiveDirectoryPassword", "u@acme.com", "p", AuthKind.AAD_PASSWORD),
            ("Active Directory Password", "u@acme.com", "p", AuthKind.AAD_PASSWORD),
            ("SqlPassword", "svc", "p", AuthKind.SQL_PASSWORD),
            ("ActiveDirectoryDefault", None, None, AuthKind.ACCESS_TOKEN),
            ("ActiveDirectoryMsi", "ignored", "ignored", AuthKind.ACCESS_TOKEN),
            ("", "svc", "p", AuthKind.SQL_PASSWORD),
            ("", "svc", None, AuthKind.ACCESS_TOKEN),
            ("", None, None, AuthKind.ACCESS_TOKEN),
        ],
    )
    def test_auth_kind(self, authentication, user, password, expected):
        descriptor = ConnectionDescriptor(
            host="h", authentication=authentication, user=user, password=password
        )
        assert descriptor.auth_kind == expected
        assert descriptor.requires_token is (expected == AuthKind.ACCESS_TOKEN)


class TestSessionParameters:

    def test_token_auth(self):
        descriptor = parse_connection_string("Server=host;Database=dw01;Authentication=ActiveDirectoryDefault")

        params = SessionParameters.from_descriptor(
            descriptor, access_token="secret-token-xyz", connect_timeout=15, request_timeout=60
        )

        assert params.database == "dw01"
        assert params.auth_kind == AuthKind.ACCESS_TOKEN
        assert params.access_token == "secret-token-xyz"
        assert params.connect_timeout == 15
        assert params.request_timeout == 60
        assert "secret-token-xyz" not in repr(params)

    def test_database_argument_overrides_descriptor(self):
        descriptor = parse_connection_string("Server=host;Database=master")

        params = SessionParameters.from_descriptor(descriptor, database="sales", access_token="tok")

        assert params.database == "sales"

    def test_descriptor_timeout_wins(self):
        descriptor = parse_connection_string("Server=host;Database=db;Connect Timeout=5")
        params = SessionParameters.from_descriptor(descriptor, access_token="t", connect_timeout=30)
        assert params.connect_timeout == 5

    def test_password_auth_drops_token(self):
        descriptor = parse_connection_string("Server=host;Database=db;User ID=svc;Password=p")

        params = SessionParameters.from_descriptor(descriptor, access_token="unused")

        assert params.auth_kind == AuthKind.SQL_PASSWORD
        assert params.access_token is None
        assert params.user == "svc"

    def test_no_database_raises(self):
        descriptor = parse_connection_string("Server=host")
        with pytest.raises(ConfigurationError, match="No database"):
            SessionParameters.from_descriptor(descriptor, access_token="tok")

    def test_token_auth_without_token_raises(self):
        descriptor = parse_connection_string("Server=host;Database=db")
        with pytest.raises(ConfigurationError, match="no token"):
            SessionParameters.from_descriptor(descriptor)

    def test_with_token(self):
        descriptor = parse_connection_string("Server=host;Database=db")
        params = SessionParameters.from_descriptor(descriptor, access_token="old")

        assert params.with_token("new").access_token == "new"
        assert params.access_token == "old"
