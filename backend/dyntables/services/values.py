"""Typed record payloads.

Incoming record data is an open JSON object. Before it reaches the store every
entry is checked against the table's declared columns and converted into a
``TypedValue`` tagged with the column's logical data type, so the insert and
update paths never bind an unchecked value.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from ..catalog import SYSTEM_COLUMNS, data_types
from ..errors import ValidationError
from ..schemas import ColumnDefinition

# purpose: coerce raw JSON values into the Python values each logical type binds as
# status: active

_INT_BOUNDS = {
    "int": (-(2**31), 2**31 - 1),
    "bigint": (-(2**63), 2**63 - 1),
}
_TRUE_STRINGS = {"true", "t", "yes", "y", "1"}
_FALSE_STRINGS = {"false", "f", "no", "n", "0"}


@dataclass(frozen=True)
class TypedValue:
    data_type: str
    value: Any

    def __post_init__(self):
        if self.data_type not in data_types():
            raise ValidationError(f"Invalid data type: {self.data_type}")


def _parse_datetime(raw: str) -> datetime:
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _to_integer(raw: Any, data_type: str) -> int:
    if isinstance(raw, bool):
        raise ValueError("booleans are not integers")
    number = Decimal(str(raw).strip())
    if number != number.to_integral_value():
        raise ValueError("not an integer")
    value = int(number)
    low, high = _INT_BOUNDS[data_type]
    if not low <= value <= high:
        raise ValueError("out of range")
    return value


def _to_decimal(raw: Any) -> Decimal:
    if isinstance(raw, bool):
        raise ValueError("booleans are not numbers")
    number = Decimal(str(raw).strip())
    if not number.is_finite():
        raise ValueError("not a finite number")
    return number


def _to_float(raw: Any) -> float:
    if isinstance(raw, bool):
        raise ValueError("booleans are not numbers")
    return float(raw)


def _to_boolean(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValueError("not a boolean")


def _to_date(raw: Any) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    text = str(raw).strip()
    if len(text) > 10:
        return _parse_datetime(text).date()
    return date.fromisoformat(text)


def _to_time(raw: Any) -> time:
    if isinstance(raw, time):
        return raw
    return time.fromisoformat(str(raw).strip())


def _to_timestamp(raw: Any, *, aware: bool) -> datetime:
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, date):
        value = datetime.combine(raw, time.min)
    else:
        value = _parse_datetime(str(raw))
    if aware:
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if value.tzinfo:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _to_json(raw: Any) -> Any:
    if isinstance(raw, str):
        return json.loads(raw)
    json.dumps(raw)
    return raw


def _to_uuid(raw: Any) -> uuid.UUID:
    if isinstance(raw, uuid.UUID):
        return raw
    return uuid.UUID(str(raw))


def coerce_scalar(data_type: str, raw: Any) -> Any:
    """Convert ``raw`` into the Python value bound for ``data_type``.

    Raises ``ValidationError`` when the value cannot represent the type.
    """

    if raw is None:
        return None
    try:
        if data_type in ("text", "varchar", "char"):
            if isinstance(raw, (dict, list)):
                raise ValueError("structured values are not text")
            return str(raw)
        if data_type in _INT_BOUNDS:
            return _to_integer(raw, data_type)
        if data_type == "decimal":
            return _to_decimal(raw)
        if data_type in ("float", "double"):
            return _to_float(raw)
        if data_type == "boolean":
            return _to_boolean(raw)
        if data_type == "date":
            return _to_date(raw)
        if data_type == "time":
            return _to_time(raw)
        if data_type == "timestamp":
            return _to_timestamp(raw, aware=False)
        if data_type == "timestamptz":
            return _to_timestamp(raw, aware=True)
        if data_type in ("json", "jsonb"):
            return _to_json(raw)
        if data_type == "uuid":
            return _to_uuid(raw)
    except (ValueError, TypeError, ArithmeticError, InvalidOperation) as exc:
        raise ValidationError(f"Value {raw!r} is not a valid {data_type}") from exc
    raise ValidationError(f"Invalid data type: {data_type}")


def coerce_value(column: ColumnDefinition, raw: Any) -> TypedValue:
    """Coerce ``raw`` for a declared column, enforcing length limits."""

    try:
        value = coerce_scalar(column.data_type, raw)
    except ValidationError as exc:
        raise ValidationError(f"Field '{column.name}': {exc.message}") from exc
    if value is not None and column.data_type in ("varchar", "char"):
        options = column.data_type_options
        limit = options.length if options and options.length else None
        if limit is None:
            limit = 255 if column.data_type == "varchar" else 1
        if len(value) > limit:
            raise ValidationError(
                f"Field '{column.name}' exceeds maximum length of {limit}"
            )
    return TypedValue(column.data_type, value)


def build_payload(
    columns: list[ColumnDefinition],
    data: Mapping[str, Any],
    *,
    partial: bool = False,
) -> dict[str, TypedValue]:
    """Validate a record payload against the declared columns.

    On create (``partial=False``) missing NOT NULL columns without a default are
    rejected and absent or null entries are left to the column default. On
    update only the supplied keys are returned, explicit nulls included.
    """

    declared = {column.name: column for column in columns}
    system = [key for key in data if key in SYSTEM_COLUMNS]
    if system:
        raise ValidationError(f"System columns cannot be written: {', '.join(system)}")
    unknown = [key for key in data if key not in declared]
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(unknown)}")

    payload: dict[str, TypedValue] = {}
    for name, column in declared.items():
        if name not in data or data[name] is None:
            if partial and name in data:
                if not column.nullable:
                    raise ValidationError(f"Field '{name}' cannot be null")
                payload[name] = TypedValue(column.data_type, None)
            elif not partial and not column.nullable and column.default is None:
                raise ValidationError(f"Field '{name}' is required")
            continue
        payload[name] = coerce_value(column, data[name])
    if partial and not payload:
        raise ValidationError("No fields to update")
    return payload


def payload_row(payload: Mapping[str, TypedValue]) -> dict[str, Any]:
    return {name: typed.value for name, typed in payload.items()}
