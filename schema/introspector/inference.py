from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from schema.introspector.models import Field


def is_timestamp_like(value: Any) -> bool:
    if isinstance(value, (datetime, date, time)):
        return True
    if callable(getattr(value, "ToDatetime", None)) or callable(getattr(value, "to_datetime", None)):
        return True
    if isinstance(value, dict):
        keys = set(value)
        if keys in ({"seconds", "nanoseconds"}, {"_seconds", "_nanoseconds"}):
            return all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in value.values())
    return False


def infer_field_type(value: Any) -> str:
    if is_timestamp_like(value):
        return "timestamp"
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return "number"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (list, tuple, set, frozenset)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return "string"


def guess_foreign_key(name: str) -> Optional[str]:
    """``customerId`` / ``customer_id`` -> ``customer.id``."""
    if name == "id":
        return None
    if name.endswith("_id") and len(name) > 3:
        return f"{name[:-3]}.id"
    if name.endswith("Id") and len(name) > 2:
        return f"{name[:-2]}.id"
    return None


def infer_fields(samples: Sequence[Dict[str, Any]]) -> List[Field]:
    order: List[str] = []
    for sample in samples:
        for key in sample:
            if key not in order:
                order.append(key)

    fields = []
    for name in order:
        values = [sample.get(name) for sample in samples]
        first = next((v for v in values if v is not None), None)
        fields.append(
            Field(
                name=name,
                type=infer_field_type(first) if first is not None else "string",
                nullable=any(v is None for v in values),
                foreign_key=guess_foreign_key(name),
            )
        )

    id_field = next((f for f in fields if f.name == "id"), None)
    others = [f for f in fields if f.name != "id"]
    id_type = id_field.type if id_field is not None else "string"
    return [Field(name="id", type=id_type, nullable=False, primary_key=True)] + others
