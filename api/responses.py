from __future__ import annotations

from typing import Any

from rest_framework import status
from rest_framework.response import Response


def envelope(data: Any = None, message: str | None = None, status_code: int = status.HTTP_200_OK, headers=None) -> Response:
    payload: dict[str, Any] = {"success": True}
    if message:
        payload["message"] = message
    payload["data"] = data
    return Response(payload, status=status_code, headers=headers)
