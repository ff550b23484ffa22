"""auth.py — Bearer JWT verification and the internal service key path."""
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

import jwt

from config import JWT_ALGORITHM, JWT_SECRET, MAINTENANCE_INTERNAL_API_KEYS, logger
from errors import AuthError
from http_utils import _error

__all__ = [
    "_authenticate",
    "_customer_claim",
    "_extract_token",
    "_verify_token",
]

# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


def _header(event: Dict[str, Any], name: str) -> str:
    headers = event.get("headers") or {}
    lowered = name.lower()
    for key, value in headers.items():
        if str(key).lower() == lowered:
            return str(value or "")
    return ""


def _extract_token(event: Dict[str, Any]) -> Optional[str]:
    raw = _header(event, "Authorization").strip()
    if not raw:
        return None
    scheme, _, token = raw.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def _customer_claim(claims: Dict[str, Any]) -> Optional[str]:
    value = claims.get("customer_id") or claims.get("cust_id")
    return str(value) if value else None


def _verify_token(token: str) -> Dict[str, Any]:
    if not JWT_SECRET:
        raise AuthError("JWT_SECRET not configured")
    try:
        claims = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM], options={"verify_exp": True})
    except jwt.ExpiredSignatureError:
        raise AuthError("Token has expired. Please sign in again.")
    except jwt.PyJWTError as exc:
        raise AuthError(f"Token validation failed: {exc}") from exc
    if not _customer_claim(claims):
        raise AuthError("Token does not carry a customer_id claim.")
    return claims


def _authenticate(event: Dict[str, Any]) -> Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
    # Optional internal auth path for trusted services and smoke tests.
    if MAINTENANCE_INTERNAL_API_KEYS:
        internal_key = _header(event, "X-Maintenance-Internal-Key")
        if internal_key and internal_key in MAINTENANCE_INTERNAL_API_KEYS:
            return {"auth_mode": "internal-key"}, None

    token = _extract_token(event)
    if not token:
        return None, _error(401, "Authorization token is missing.")

    try:
        return _verify_token(token), None
    except AuthError as exc:
        logger.warning("[WARNING] rejected token: %s", exc.message)
        return None, _error(exc.status_code, exc.message, code=exc.code)
