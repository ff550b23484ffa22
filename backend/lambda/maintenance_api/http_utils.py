"""http_utils.py — API Gateway response envelopes and request parsing."""
from __future__ import annotations

import base64
import json
from decimal import Decimal
from typing import Any, Dict, Tuple

from config import CORS_ORIGIN

__all__ = [
    "_binary_response",
    "_cors_headers",
    "_error",
    "_json_body",
    "_path_method",
    "_query_params",
    "_response",
]

_ERROR_CODES = {
    400: "INVALID_INPUT",
    401: "PERMISSION_DENIED",
    404: "NOT_FOUND",
    409: "CONFLICT",
}

# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


def _cors_headers() -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": CORS_ORIGIN,
        "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "Accept, Authorization, Content-Type, X-Maintenance-Internal-Key",
        "Access-Control-Allow-Credentials": "true",
    }


def _json_number(obj: Any) -> Any:
    # Numbers read back from DynamoDB arrive as Decimal.
    if isinstance(obj, Decimal):
        return int(obj) if obj == obj.to_integral_value() else float(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _response(status_code: int, payload: Any) -> Dict[str, Any]:
    headers = _cors_headers()
    headers["Content-Type"] = "application/json"
    return {
        "statusCode": status_code,
        "headers": headers,
        "body": json.dumps(payload, default=_json_number),
    }


def _binary_response(status_code: int, data: bytes, content_type: str, filename: str) -> Dict[str, Any]:
    headers = _cors_headers()
    headers["Content-Type"] = content_type
    headers["Content-Disposition"] = f"attachment; filename={filename}"
    return {
        "statusCode": status_code,
        "headers": headers,
        "body": base64.b64encode(data).decode("ascii"),
        "isBase64Encoded": True,
    }


def _error(status_code: int, message: str, **extra: Any) -> Dict[str, Any]:
    """Failure body: flat ``error`` message plus ``error_envelope``; ``extra`` becomes ``details``."""
    code = str(extra.pop("code", "") or "").strip().upper() or _ERROR_CODES.get(status_code, "INTERNAL_ERROR")
    retryable = bool(extra.pop("retryable", status_code >= 500))
    envelope = {"code": code, "message": message, "retryable": retryable, "details": dict(extra)}
    body: Dict[str, Any] = {"success": False, "error": message, "error_envelope": envelope}
    body.update(extra)
    return _response(status_code, body)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


def _json_body(event: Dict[str, Any]) -> Dict[str, Any]:
    raw = event.get("body")
    if raw in (None, ""):
        return {}
    if event.get("isBase64Encoded"):
        raw = base64.b64decode(raw).decode("utf-8")
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON body: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError("JSON body must be an object")
    return parsed


def _query_params(event: Dict[str, Any]) -> Dict[str, str]:
    return {k: v for k, v in (event.get("queryStringParameters") or {}).items() if v is not None}


def _path_method(event: Dict[str, Any]) -> Tuple[str, str]:
    http = (event.get("requestContext") or {}).get("http") or {}
    method = str(http.get("method") or event.get("httpMethod") or "").upper()
    return method, event.get("rawPath") or event.get("path") or "/"
