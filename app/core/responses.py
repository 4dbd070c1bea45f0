"""Standardized API response utilities.

Every success body is ``{"message": ..., <resource>: ...}`` and every error
body is ``{"message": ...}``.
"""

import json
from datetime import date, datetime
from typing import Any
from uuid import UUID

from fastapi.responses import JSONResponse
from pydantic import BaseModel


class CustomJSONEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles UUID, datetime, and other types."""

    def default(self, obj):
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, bytes):
            return obj.decode("utf-8")
        return super().default(obj)


class ErrorResponse(BaseModel):
    """Standardized error response model."""

    message: str
    errors: dict[str, Any] | None = None


def message_response(message: str, **payload: Any) -> dict[str, Any]:
    """Create a successful API response: a message plus named payload fields."""
    return {"message": message, **payload}


def error_response_dict(
    message: str,
    status_code: int,
    errors: dict[str, Any] | None = None,
    error: str | None = None,
) -> JSONResponse:
    """Create an error response as a JSONResponse (for exception handlers)."""
    body: dict[str, Any] = {"message": message}
    if errors:
        body["errors"] = errors
    if error:
        body["error"] = error
    # Serialize with custom encoder to handle UUID, datetime, etc.
    content = json.loads(json.dumps(body, cls=CustomJSONEncoder))
    return JSONResponse(status_code=status_code, content=content)
