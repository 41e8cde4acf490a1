"""Database adapter layer: one uniform async CRUD contract across engines."""

from adapters.factory import get_adapter, open_adapter

__all__ = ["get_adapter", "open_adapter"]
