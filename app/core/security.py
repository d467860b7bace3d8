"""Provides API key-based security for FastAPI endpoints."""

import logging

from fastapi import Depends
from fastapi import HTTPException
from fastapi import Request
from fastapi.security import APIKeyHeader

# Initialize logger
logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(request: Request, key: str | None = Depends(api_key_header)) -> bool:
    """Verifies the provided API key against the server's configured API key.

    Used as a FastAPI dependency to protect the generation and analysis routes,
    which spend tokens on the operator's OpenAI account.

    Args:
        request: The incoming request; the expected key is read from the
                 settings of the application serving it.
        key: The API key extracted from the 'X-API-Key' header, if any.

    Returns:
        True if the API key is valid.

    Raises:
        HTTPException: With status code 403 if the key is missing, invalid, or
                       if the server has no API key configured.
    """
    expected_key = request.app.state.settings.api_key
    if not expected_key:
        logger.critical(
            "CRITICAL: API key security is enforced, but no API_KEY is configured "
            "on the server. All API requests requiring this key will be denied."
        )
        raise HTTPException(status_code=403, detail="Invalid API Key")

    if key != expected_key:
        raise HTTPException(status_code=403, detail="Invalid API Key")
    return True
