"""
Named statement parameters and statement fingerprints.

Each Python value is bound with a declared SQL type chosen from its runtime
type:

    bool                  -> BIT
    int                   -> INTEGER (BIGINT)
    float, Decimal        -> FLOAT
    date, datetime, time  -> TIMESTAMP (DATETIME2)
    anything else         -> TEXT (NVARCHAR(MAX))

bool is checked before int since bool is an int subclass.
"""

import hashlib
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any

from synapse_core.errors.exceptions import ClientRequestError
from synapse_core.utils.json_serializers import stable_dumps

_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ParameterType(Enum):
    """Declared parameter type, valued by its T-SQL declaration."""

    TEXT = "NVARCHAR(MAX)"
    INTEGER = "BIGINT"
    FLOAT = "FLOAT"
    BIT = "BIT"
    TIMESTAMP = "DATETIME2"

    @property
    def sql_type(self) -> str:
        return self.value


@dataclass(frozen=True)
class BoundParameter:
    name: str
    type: ParameterType
    value: Any

    @property
    def declaration(self) -> str:
        return f"@{self.name} {self.type.sql_type}"


def infer_parameter_type(value: Any) -> ParameterType:
    if isinstance(value, bool):
        return ParameterType.BIT
    if isinstance(value, int):
        return ParameterType.INTEGER
    if isinstance(value, (float, Decimal)):
        return ParameterType.FLOAT
    if isinstance(value, (datetime, date, time)):
        return ParameterType.TIMESTAMP
    return ParameterType.TEXT


def _text_value(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (dict, list, tuple)):
        return stable_dumps(value)
    if isinstance(value, (bytes, bytearray)):
        return value.hex()
    return str(value)


def bind_parameter(name: str, value: Any) -> BoundParameter:
    """
    Bind one named value.

    Raises:
        ClientRequestError: The name is not a valid identifier
    """
    clean = name[1:] if name.startswith("@") else name
    if not _NAME_PATTERN.match(clean):
        raise ClientRequestError(
            f"Invalid parameter name: {name!r}",
            context={"parameter": name},
        )
    param_type = infer_parameter_type(value)
    if param_type == ParameterType.TEXT:
        value = _text_value(value)
    elif param_type == ParameterType.FLOAT and isinstance(value, Decimal):
        value = float(value)
    return BoundParameter(name=clean, type=param_type, value=value)


def bind_parameters(parameters: Mapping[str, Any] | None) -> list[BoundParameter]:
    """Bind every entry of ``parameters``, preserving mapping order."""
    if not parameters:
        return []
    return [bind_parameter(name, value) for name, value in parameters.items()]


def statement_fingerprint(statement: str, parameters: Mapping[str, Any] | None = None) -> str:
    """
    Deterministic digest of statement text plus parameters.

    Parameter order does not matter. Each value is tagged with its bound
    type, so values that serialize alike but bind differently (a datetime
    and its ISO string) never share a fingerprint.

    Raises:
        ClientRequestError: A parameter name is not a valid identifier
    """
    typed = {p.name: [p.type.name, p.value] for p in bind_parameters(parameters)}
    digest = hashlib.sha256()
    digest.update(statement.encode("utf-8"))
    digest.update(b"\x1f")
    digest.update(stable_dumps(typed).encode("utf-8"))
    return digest.hexdigest()


__all__ = [
    "ParameterType",
    "BoundParameter",
    "infer_parameter_type",
    "bind_parameter",
    "bind_parameters",
    "statement_fingerprint",
]
