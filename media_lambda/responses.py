"""
Lambda proxy response builders and the ``Server-Timing`` accumulator.

Every response leaves the function as an API Gateway proxy dictionary.
Binary payloads travel base64 encoded. Error responses carry only the
generic message of the error kind; details are written to the log here and
nowhere else.
"""

from __future__ import annotations

import base64
import json
import logging
import time
from typing import Dict, List, Optional, Tuple

from .errors import MediaError

logger = logging.getLogger(__name__)

FILE_CACHE_CONTROL = "public, max-age=31536000"
REDIRECT_CACHE_CONTROL = "private, no-store"


class TimingLog:
    """Append-only list of ``(stage, milliseconds)`` pairs for one request."""

    def __init__(self) -> None:
        self._entries: List[Tuple[str, int]] = []
        self._started = time.perf_counter()

    def restart(self) -> None:
        self._started = time.perf_counter()

    def record(self, stage: str) -> int:
        """Close the running stage under ``stage`` and start the next one."""
        now = time.perf_counter()
        duration_ms = int((now - self._started) * 1000)
        self._entries.append((stage, duration_ms))
        self._started = now
        return duration_ms

    @property
    def entries(self) -> List[Tuple[str, int]]:
        return list(self._entries)

    def header(self) -> str:
        return ",".join(f"{stage};dur={ms}" for stage, ms in self._entries)


def _with_timing(headers: Dict[str, str], timing: Optional[TimingLog]) -> Dict[str, str]:
    if timing is not None and timing.entries:
        headers["Server-Timing"] = timing.header()
    return headers


def binary_response(
    body: bytes,
    content_type: str,
    cache_control: str,
    timing: Optional[TimingLog] = None,
) -> Dict[str, object]:
    headers = {"Content-Type": content_type, "Cache-Control": cache_control}
    return {
        "statusCode": 200,
        "headers": _with_timing(headers, timing),
        "body": base64.b64encode(body).decode("ascii"),
        "isBase64Encoded": True,
    }


def redirect_response(location: str, timing: Optional[TimingLog] = None) -> Dict[str, object]:
    headers = {"Location": location, "Cache-Control": REDIRECT_CACHE_CONTROL}
    return {
        "statusCode": 302,
        "headers": _with_timing(headers, timing),
        "body": "",
    }


def error_response(error: MediaError, **context: object) -> Dict[str, object]:
    """Log ``error`` with ``context`` and return its generic public response."""
    payload = {
        "action": "error",
        "error": type(error).__name__,
        "status": error.status_code,
        "detail": error.detail,
    }
    if error.stage:
        payload["stage"] = error.stage
    payload.update({k: v for k, v in context.items() if v is not None})
    if error.status_code >= 500:
        logger.error(json.dumps(payload, default=str), exc_info=error.__cause__ or error)
    else:
        logger.info(json.dumps(payload, default=str))
    return {
        "statusCode": error.status_code,
        "headers": {"Content-Type": "text/plain"},
        "body": error.message,
    }
