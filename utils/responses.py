import logging

from fastapi import HTTPException

from config.settings import IS_PRODUCTION

logger = logging.getLogger(__name__)


def success_response(**data) -> dict:
    return {"success": True, **data}


def internal_error(action: str, error: Exception) -> HTTPException:
    """500 with a generic message in production and the cause elsewhere."""
    logger.error(f"{action} failed: {error}", exc_info=True)
    if IS_PRODUCTION:
        return HTTPException(status_code=500, detail="Internal server error")
    return HTTPException(status_code=500, detail=f"{action} failed: {error}")


def store_unavailable(action: str, error: Exception) -> HTTPException:
    logger.error(f"{action}: user store unavailable: {error}")
    return HTTPException(status_code=503, detail="Service temporarily unavailable")
