from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


FIELD_TYPES = ("string", "number", "boolean", "timestamp", "array", "object")


@dataclass
class Field:
    name: str
    type: str = "string"
    nullable: bool = True
    primary_key: bool = False
    foreign_key: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        if payload["foreign_key"] is None:
            payload.pop("foreign_key")
        return payload


@dataclass
class Collection:
    name: str
    row_count: int = 0
    fields: List[Field] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "row_count": self.row_count,
            "fields": [f.to_dict() for f in self.fields],
            "meta": dict(self.meta),
        }


@dataclass
class IntrospectionResult:
    collections: List[Collection] = field(default_factory=list)
    denied: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    def collection_names(self) -> List[str]:
        return [c.name for c in self.collections]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tables": [c.to_dict() for c in self.collections],
            "collections": self.collection_names(),
            "denied": list(self.denied),
            "failed": dict(self.failed),
        }
