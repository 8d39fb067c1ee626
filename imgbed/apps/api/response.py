from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class ErrorBody(BaseModel):
    # Shared failure body for upload and admin routes.
    status: int
    message: str
    success: bool = False


def success_response(data: Any = None, *, message: str | None = None) -> dict[str, Any]:
    # Admin and tag routes answer with {success, data, message?}.
    payload: dict[str, Any] = {"success": True, "data": data}
    if message:
        payload["message"] = message
    return payload


def error_payload(status_code: int, message: str) -> dict[str, Any]:
    return ErrorBody(status=status_code, message=message).model_dump()
