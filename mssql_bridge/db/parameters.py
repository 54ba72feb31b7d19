"""Named query parameters as tagged scalar values."""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from mssql_bridge.errors import BadRequest

_NAME_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

BIGINT_MIN = -(2 ** 63)
BIGINT_MAX = 2 ** 63 - 1


class ParameterKind(str, Enum):
    STRING = 'string'
    INTEGER = 'integer'
    NUMBER = 'number'
    BOOLEAN = 'boolean'
    NULL = 'null'
    DATE = 'date'


# T-SQL types used in the sp_executesql declaration for each kind
SQL_TYPES = {
    ParameterKind.STRING: 'nvarchar(max)',
    ParameterKind.INTEGER: 'bigint',
    ParameterKind.NUMBER: 'float',
    ParameterKind.BOOLEAN: 'bit',
    ParameterKind.NULL: 'nvarchar(max)',
    ParameterKind.DATE: 'datetime2',
}


@dataclass(frozen=True)
class ScalarParameter:
    """One named parameter, tagged with the scalar kind it was built from."""

    name: str
    kind: ParameterKind
    value: Any

    @property
    def sql_type(self) -> str:
        if self.kind is ParameterKind.DATE and not isinstance(self.value, datetime):
            return 'date'
        return SQL_TYPES[self.kind]

    @property
    def declaration(self) -> str:
        return f"@{self.name} {self.sql_type}"


def normalize_name(raw: Any) -> str:
    """Strip an optional leading ``@`` and check the rest is an identifier."""
    if not isinstance(raw, str):
        raise BadRequest(f"Parameter names must be strings, got {type(raw).__name__}")
    name = raw[1:] if raw.startswith('@') else raw
    if not _NAME_RE.match(name):
        raise BadRequest(f"Invalid parameter name: {raw!r}")
    return name


def classify(name: str, value: Any) -> ScalarParameter:
    """
    Tag a single value with its kind.

    Raises:
        BadRequest: for arrays, objects, non-finite floats and out-of-range integers
    """
    # bool first: it is a subclass of int
    if isinstance(value, bool):
        return ScalarParameter(name, ParameterKind.BOOLEAN, value)
    if value is None:
        return ScalarParameter(name, ParameterKind.NULL, None)
    if isinstance(value, int):
        if not (BIGINT_MIN <= value <= BIGINT_MAX):
            raise BadRequest(f"Parameter '{name}' is outside the 64-bit integer range")
        return ScalarParameter(name, ParameterKind.INTEGER, value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise BadRequest(f"Parameter '{name}' must be a finite number")
        return ScalarParameter(name, ParameterKind.NUMBER, value)
    if isinstance(value, str):
        return ScalarParameter(name, ParameterKind.STRING, value)
    if isinstance(value, (datetime, date)):
        return ScalarParameter(name, ParameterKind.DATE, value)
    raise BadRequest(
        f"Parameter '{name}' must be a string, number, boolean, null or date; "
        f"got {type(value).__name__}"
    )


def build_parameters(raw: Optional[Mapping[str, Any]]) -> List[ScalarParameter]:
    """Validate a name -> value mapping into tagged parameters, preserving order."""
    if raw is None:
        return []
    if not isinstance(raw, Mapping):
        raise BadRequest("'parameters' must be an object mapping names to values")

    params: Dict[str, ScalarParameter] = {}
    for raw_name, value in raw.items():
        name = normalize_name(raw_name)
        key = name.lower()
        if key in params:
            # T-SQL parameter names are case-insensitive
            raise BadRequest(f"Duplicate parameter name: {raw_name!r}")
        params[key] = classify(name, value)
    return list(params.values())
