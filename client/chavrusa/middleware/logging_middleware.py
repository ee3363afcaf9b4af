"""
httpx event hooks for logging outgoing API requests and responses.

Attached to every ``httpx.AsyncClient`` the client creates when request
logging is enabled. They log:
- Request: method, URL, filtered headers, body (DEBUG)
- Response: status code, duration, error reason for 4xx/5xx
"""

import json
import logging
import time
from typing import Dict, List, Optional

import httpx

from ..core.logging_config import filter_sensitive_data, truncate_large_data

logger = logging.getLogger(__name__)

_START_KEY = "chavrusa_started_at"


def _decode_and_truncate(data: bytes, max_length: int = 5000) -> str:
    """Decode response/request bytes and truncate for safe logging."""
    return truncate_large_data(data.decode("utf-8", errors="ignore"), max_length=max_length)


def _sanitize_text_or_json(text: str) -> str:
    """Filter sensitive data if payload is JSON, fallback to plain text."""
    try:
        payload = json.loads(text)
        filtered_payload = filter_sensitive_data(payload)
        return truncate_large_data(json.dumps(filtered_payload, ensure_ascii=False), max_length=5000)
    except json.JSONDecodeError:
        return truncate_large_data(text, max_length=5000)


def _extract_error_reason(response_text: str) -> Optional[str]:
    """Extract a concise error reason from response body."""
    try:
        payload = json.loads(response_text)
        if isinstance(payload, dict):
            # Server errors look like {"error": {"code", "message"}}
            error = payload.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            for key in ("detail", "message", "error", "msg", "error_description"):
                value = payload.get(key)
                if value:
                    return str(value)
            return truncate_large_data(json.dumps(payload, ensure_ascii=False), max_length=500)
    except json.JSONDecodeError:
        if response_text:
            return truncate_large_data(response_text, max_length=500)
    return None


async def log_request(request: httpx.Request) -> None:
    request.extensions[_START_KEY] = time.time()

    logger.info(
        f"API request started: {request.method} {request.url}",
        extra={"extra_fields": {
            "method": request.method,
            "url": str(request.url),
            "headers": filter_sensitive_data(dict(request.headers)),
        }}
    )

    if logger.isEnabledFor(logging.DEBUG) and request.content:
        logger.debug(f"Request body: {_sanitize_text_or_json(_decode_and_truncate(request.content))}")


async def log_response(response: httpx.Response) -> None:
    request = response.request
    started_at = request.extensions.get(_START_KEY)
    duration_ms = (time.time() - started_at) * 1000 if started_at else None

    await response.aread()
    response_body_text = _sanitize_text_or_json(_decode_and_truncate(response.content)) if response.content else None
    error_reason = _extract_error_reason(response_body_text or "") if response.status_code >= 400 else None

    if response.status_code < 400:
        log_level = logging.INFO
    elif response.status_code < 500:
        log_level = logging.WARNING
    else:
        log_level = logging.ERROR

    duration_text = f"{duration_ms:.2f}ms" if duration_ms is not None else "n/a"
    completion_message = (
        f"API request completed: {request.method} {request.url} - "
        f"{response.status_code} ({duration_text})"
    )
    if error_reason:
        completion_message += f" | error_reason={error_reason}"

    logger.log(
        log_level,
        completion_message,
        extra={"extra_fields": {
            "method": request.method,
            "url": str(request.url),
            "status_code": response.status_code,
            "duration_ms": duration_ms,
            "error_reason": error_reason,
        }}
    )

    if logger.isEnabledFor(logging.DEBUG) and response_body_text:
        logger.debug(f"Response body: {response_body_text}")


def build_event_hooks(enabled: bool = True) -> Dict[str, List]:
    """Event hooks mapping for ``httpx.AsyncClient(event_hooks=...)``."""
    if not enabled:
        return {"request": [], "response": []}
    return {"request": [log_request], "response": [log_response]}
