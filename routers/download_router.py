"""
Download Router - desktop installers are served from the release host
"""

import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import RedirectResponse

from config.settings import settings

logger = logging.getLogger(__name__)

download_router = APIRouter(prefix="/api/download", tags=["download"])


def _release_urls() -> dict:
    return {
        "windows": settings.download_windows_url,
        "mac": settings.download_mac_url,
    }


@download_router.get("/{platform}")
async def download_installer(platform: str):
    """Redirect to the installer for the platform (windows or mac)"""
    url = _release_urls().get(platform.lower())
    if not url:
        raise HTTPException(status_code=404, detail=f"No download available for platform '{platform}'")
    logger.info(f"Download requested: {platform}")
    return RedirectResponse(url=url, status_code=307)
