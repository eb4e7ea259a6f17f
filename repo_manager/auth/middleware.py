"""HTTP Basic credential extraction for Starlette."""

import base64
import binascii
from typing import Any

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from .models import BasicCredentials

logger = structlog.get_logger()

WWW_AUTHENTICATE = 'Basic realm="repo-manager"'


def parse_basic_authorization(header: str | None) -> BasicCredentials | None:
    """Decode an ``Authorization: Basic`` header value.

    Returns None when no header is present.

    Raises:
        ValueError: If the header is present but not valid Basic credentials
    """
    if not header:
        return None

    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic" or not encoded.strip():
        raise ValueError("Unsupported authorization scheme")

    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ValueError(f"Malformed basic credentials: {e}") from None

    username, sep, password = decoded.partition(":")
    if not sep:
        raise ValueError("Malformed basic credentials: missing separator")
    return BasicCredentials(username=username, password=password)


class BasicAuthMiddleware(BaseHTTPMiddleware):
    """Decode Basic credentials into ``request.state.credentials``.

    Authentication itself happens per repository; this only parses headers.
    """

    def __init__(self, app: Any, unprotected_paths: tuple[str, ...] = ("/health",)):
        super().__init__(app)
        self.unprotected_paths = unprotected_paths

    async def dispatch(self, request: Any, call_next: Any) -> Any:
        """Process request with credential extraction."""
        if request.url.path in self.unprotected_paths:
            request.state.credentials = None
            return await call_next(request)

        try:
            credentials = parse_basic_authorization(
                request.headers.get("Authorization")
            )
        except ValueError as e:
            logger.warning(
                "Invalid authorization header", path=request.url.path, error=str(e)
            )
            return JSONResponse(
                status_code=401,
                content={"error": "Invalid authorization header"},
                headers={"WWW-Authenticate": WWW_AUTHENTICATE},
            )

        request.state.credentials = credentials
        return await call_next(request)
