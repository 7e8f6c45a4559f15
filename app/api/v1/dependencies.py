# app/api/v1/dependencies.py
"""
FastAPI dependencies
"""

import logging

from fastapi import HTTPException, Request, status

from services.user_context_service import UserContextService

logger = logging.getLogger(__name__)


async def get_user_context_service(request: Request) -> UserContextService:
    """
    The service built at startup and kept on app.state.

    Raises:
        HTTPException: 503 if the application has not finished starting
    """
    service = getattr(request.app.state, "user_context_service", None)
    if service is None:
        logger.error("User context service requested before startup completed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="User context service is not ready",
        )
    return service
