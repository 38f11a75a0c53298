# coding: utf-8
"""
API Key Authentication

Service-to-service protection for the core endpoints. The presentation
layer authenticates end users and calls the core with a shared key.

Usage:
    @router.post("/protected-endpoint")
    async def protected(api_key: str = Depends(verify_api_key)):
        # Only accessible with valid API key
        pass
"""
import secrets
from typing import Optional

from fastapi import Header, HTTPException
from loguru import logger

from config.config import CORE_API_KEY


async def verify_api_key(
    x_api_key: Optional[str] = Header(None, description="Core service API key")
) -> str:
    """
    Verify API key from request header

    Headers:
        X-API-Key: your-secret-api-key

    Raises:
        HTTPException 401: If API key is missing or invalid
        HTTPException 500: If no key is configured

    Returns:
        API key if valid
    """
    if not x_api_key:
        logger.warning("API key missing in request")
        raise HTTPException(
            status_code=401,
            detail="Missing API key. Provide X-API-Key header."
        )

    if not CORE_API_KEY:
        logger.error("CORE_API_KEY not configured in .env")
        raise HTTPException(
            status_code=500,
            detail="API key authentication not configured"
        )

    if not secrets.compare_digest(x_api_key, CORE_API_KEY):
        logger.warning(f"Invalid API key attempt: {x_api_key[:4]}...")
        raise HTTPException(
            status_code=401,
            detail="Invalid API key"
        )

    return x_api_key
