from __future__ import annotations

from typing import Any

from pydantic import BaseModel


def _plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, list):
        return [_plain(item) for item in value]
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    return value


def ok(data: Any = None, **extra: Any) -> dict[str, Any]:
    return {"success": True, "data": _plain(data), **{key: _plain(item) for key, item in extra.items()}}


def error_body(kind: str, detail: str) -> dict[str, Any]:
    return {"success": False, "error": kind, "detail": detail}
