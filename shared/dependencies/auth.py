"""FastAPI authentication dependency."""

import hmac

from fastapi import HTTPException, Request


async def verify_api_key(request: Request) -> None:
    """Check the X-API-Key header against APP_API_KEY.

    Args:
        request (Request): The incoming FastAPI request.

    Raises:
        HTTPException: 503 if the server has no API key configured, 401 if the key is missing or wrong.
    """
    expected_key = request.app.state.config.get_optional_string_val("APP_API_KEY")
    if not expected_key:
        request.app.state.logging.error("APP_API_KEY is not configured, rejecting request.")
        raise HTTPException(status_code=503, detail="API key not configured.")
    provided_key = request.headers.get("X-API-Key") or ""
    if not hmac.compare_digest(provided_key.encode(), expected_key.encode()):
        raise HTTPException(status_code=401, detail="Invalid or missing API key.")
