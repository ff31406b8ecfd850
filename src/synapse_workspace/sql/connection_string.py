"""
Connection string parsing.

Pool descriptors carry ADO.NET/ODBC style connection strings such as::

    Server=tcp:acme.sql.azuresynapse.net,1433;Database=dw01;
    Authentication=ActiveDirectoryDefault;Encrypt=True

These are parsed into a ConnectionDescriptor, and combined with the pool's
timeouts (and a token, for token authentication) into SessionParameters
handed to the session factory.
"""

from dataclasses import dataclass, field, replace
from enum import Enum

from synapse_core.errors.exceptions import ConfigurationError

DEFAULT_PORT = 1433

# Normalized key -> aliases accepted in connection strings (lowercased)
_KEY_ALIASES = {
    "server": ("server", "data source", "address", "addr", "network address"),
    "database": ("database", "initial catalog"),
    "authentication": ("authentication",),
    "user": ("user id", "uid", "user"),
    "password": ("password", "pwd"),
    "encrypt": ("encrypt",),
    "trust_server_certificate": ("trustservercertificate", "trust server certificate"),
    "connect_timeout": ("connection timeout", "connect timeout", "logintimeout"),
}
_ALIAS_LOOKUP = {alias: key for key, aliases in _KEY_ALIASES.items() for alias in aliases}


class AuthKind(str, Enum):
    """How a SQL session authenticates."""

    SQL_PASSWORD = "sql_password"
    AAD_PASSWORD = "aad_password"
    ACCESS_TOKEN = "access_token"


def _parse_bool(value: str, default: bool) -> bool:
    text = value.strip().lower()
    if text in ("true", "yes", "1", "mandatory", "strict"):
        return True
    if text in ("false", "no", "0", "optional"):
        return False
    return default


def _split_pairs(text: str) -> dict[str, str]:
    """Split ``key=value;`` pairs, honouring ``{...}`` quoted values."""
    pairs: dict[str, str] = {}
    i, length = 0, len(text)
    while i < length:
        eq = text.find("=", i)
        if eq == -1:
            break
        key = text[i:eq].strip().lower()
        j = eq + 1
        if j < length and text[j] == "{":
            # ODBC quoting: value ends at the first "}" not doubled
            value_chars = []
            j += 1
            while j < length:
                if text[j] == "}":
                    if j + 1 < length and text[j + 1] == "}":
                        value_chars.append("}")
                        j += 2
                        continue
                    j += 1
                    break
                value_chars.append(text[j])
                j += 1
            value = "".join(value_chars)
            semi = text.find(";", j)
            i = length if semi == -1 else semi + 1
        else:
            semi = text.find(";", j)
            end = length if semi == -1 else semi
            value = text[j:end].strip()
            i = end + 1
        if key:
            pairs[key] = value
    return pairs


@dataclass(frozen=True)
class ConnectionDescriptor:
    """Parsed connection coordinates of one SQL pool."""

    host: str
    port: int = DEFAULT_PORT
    database: str = ""
    authentication: str = ""
    user: str | None = None
    password: str | None = field(default=None, repr=False)
    encrypt: bool = True
    trust_server_certificate: bool = False
    connect_timeout: int | None = None

    @property
    def auth_kind(self) -> AuthKind:
        """
        Authentication kind implied by the connection string.

        ActiveDirectoryPassword uses the embedded user and password; any
        other ActiveDirectory* mode, or no credentials at all, uses a token
        from the tenant's credential strategy. A bare user/password pair is
        SQL authentication.
        """
        mode = self.authentication.replace(" ", "").lower()
        if mode == "activedirectorypassword":
            return AuthKind.AAD_PASSWORD
        if mode == "sqlpassword":
            return AuthKind.SQL_PASSWORD
        if mode.startswith("activedirectory"):
            return AuthKind.ACCESS_TOKEN
        if self.user and self.password:
            return AuthKind.SQL_PASSWORD
        return AuthKind.ACCESS_TOKEN

    @property
    def requires_token(self) -> bool:
        return self.auth_kind == AuthKind.ACCESS_TOKEN


def parse_connection_string(text: str) -> ConnectionDescriptor:
    """
    Parse a pool connection string.

    Raises:
        ConfigurationError: No server is present or the port is not a number
    """
    raw = _split_pairs(text or "")
    values: dict[str, str] = {}
    for key, value in raw.items():
        normalized = _ALIAS_LOOKUP.get(key)
        if normalized and normalized not in values:
            values[normalized] = value

    server = values.get("server", "").strip()
    if server.lower().startswith("tcp:"):
        server = server[4:]
    if not server:
        raise ConfigurationError("Connection string has no Server entry")

    port = DEFAULT_PORT
    if "," in server:
        server, port_text = server.split(",", 1)
        try:
            port = int(port_text.strip())
        except ValueError as e:
            raise ConfigurationError(f"Invalid port in connection string: {port_text!r}") from e

    connect_timeout = None
    if values.get("connect_timeout"):
        try:
            connect_timeout = int(values["connect_timeout"])
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid connection timeout: {values['connect_timeout']!r}"
            ) from e

    return ConnectionDescriptor(
        host=server.strip(),
        port=port,
        database=values.get("database", ""),
        authentication=values.get("authentication", ""),
        user=values.get("user") or None,
        password=values.get("password") or None,
        encrypt=_parse_bool(values.get("encrypt", "true"), True),
        trust_server_certificate=_parse_bool(values.get("trust_server_certificate", "false"), False),
        connect_timeout=connect_timeout,
    )


@dataclass(frozen=True)
class SessionParameters:
    """Everything a session factory needs to open one session."""

    server: str
    port: int
    database: str
    auth_kind: AuthKind
    user: str | None = None
    password: str | None = field(default=None, repr=False)
    access_token: str | None = field(default=None, repr=False)
    encrypt: bool = True
    trust_server_certificate: bool = False
    connect_timeout: int = 30
    request_timeout: int = 30

    @classmethod
    def from_descriptor(
        cls,
        descriptor: ConnectionDescriptor,
        database: str | None = None,
        access_token: str | None = None,
        connect_timeout: int = 30,
        request_timeout: int = 30,
    ) -> "SessionParameters":
        """
        Combine parsed coordinates with runtime values.

        Raises:
            ConfigurationError: No database, or token auth without a token
        """
        target_database = database or descriptor.database
        if not target_database:
            raise ConfigurationError(
                f"No database given and none in the connection string for {descriptor.host}"
            )
        auth_kind = descriptor.auth_kind
        if auth_kind == AuthKind.ACCESS_TOKEN and not access_token:
            raise ConfigurationError(
                f"Connection to {descriptor.host} uses token authentication but no token was supplied"
            )
        return cls(
            server=descriptor.host,
            port=descriptor.port,
            database=target_database,
            auth_kind=auth_kind,
            user=descriptor.user,
            password=descriptor.password,
            access_token=access_token if auth_kind == AuthKind.ACCESS_TOKEN else None,
            encrypt=descriptor.encrypt,
            trust_server_certificate=descriptor.trust_server_certificate,
            connect_timeout=descriptor.connect_timeout or connect_timeout,
            request_timeout=request_timeout,
        )

    def with_token(self, access_token: str) -> "SessionParameters":
        return replace(self, access_token=access_token)


__all__ = [
    "AuthKind",
    "ConnectionDescriptor",
    "SessionParameters",
    "DEFAULT_PORT",
    "parse_connection_string",
]
