# context_window_manager/base_models.py
"""Base model with dict-style access for callers that hold raw message dicts."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class DictCompatModel(BaseModel):
    """Base for models that can stand in for plain dicts.

    Conversation state usually arrives as JSON, so ``msg["content"]``,
    ``msg.get("summary")`` and ``"summary" in msg`` keep working on the
    typed models.
    """

    def __getitem__(self, key: str) -> Any:
        if key not in type(self).model_fields:
            raise KeyError(key)
        return getattr(self, key)

    def __contains__(self, key: object) -> bool:
        if isinstance(key, str):
            return key in type(self).model_fields
        return False

    def get(self, key: str, default: Any = None) -> Any:
        if key not in type(self).model_fields:
            return default
        return getattr(self, key)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, dict):
            return self.model_dump() == other
        return super().__eq__(other)
