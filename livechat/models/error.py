from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

from fastapi.responses import JSONResponse

from livechat.models.message import OperationResult

CHAT_NOT_FOUND = "Chat not found"
USER_BLOCKED = "Cannot send message - user is blocked"

_REJECTIONS = {
    CHAT_NOT_FOUND: (404, "ItemNotFound"),
    USER_BLOCKED: (403, "Forbidden"),
}


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    now = datetime.now(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")
    payload = {
        "error": {
            "code": code,
            "message": message,
            "innerError": {
                "date": now,
                "request-id": str(uuid4()),
            },
        }
    }
    return JSONResponse(status_code=status_code, content=payload)


def result_error_response(result: OperationResult) -> JSONResponse:
    message = result.error or "Operation failed"
    status_code, code = _REJECTIONS.get(message, (502, "StoreUnavailable"))
    return error_response(status_code, code, message)
