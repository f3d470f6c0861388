from __future__ import annotations

import hashlib
import logging
import time

from flask import Flask, g, request

logger = logging.getLogger("api.requests")

SENSITIVE_HEADERS = {"authorization", "cookie", "x-api-key", "x-auth-token"}


def _sanitize_headers(headers: dict[str, str]) -> dict[str, str]:
    sanitized = {}
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS:
            sanitized[key] = f"<hashed:{hashlib.sha256(value.encode()).hexdigest()[:8]}>"
        else:
            sanitized[key] = value
    return sanitized


def configure_request_logging(app: Flask) -> None:
    debug_mode = app.debug

    @app.before_request
    def _before_request() -> None:
        g.request_start_time = time.time()
        user_agent = request.headers.get("User-Agent", "")
        if debug_mode:
            logger.debug("%s %s headers=%s", request.method, request.path,
                         _sanitize_headers(dict(request.headers)))
        logger.info('%s %s - User-Agent: "%s"', request.method, request.path, user_agent)

    @app.after_request
    def _after_request(response):
        duration = time.time() - getattr(g, "request_start_time", time.time())
        logger.info("%s %s - Status: %s - %.3fs", request.method, request.path,
                    response.status_code, duration)
        return response
