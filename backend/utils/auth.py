"""
Authentication utilities

Admin endpoints are open unless ADMIN_API_KEY is configured, in which case
callers must send it in the X-Admin-Key header.
"""
import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException, Request

logger = logging.getLogger(__name__)


async def get_admin_access(request: Request, x_admin_key: Optional[str] = Header(None)) -> bool:
    """Check the admin key when one is configured."""
    expected = request.app.state.settings.admin_api_key
    if not expected:
        return True

    if not x_admin_key or not hmac.compare_digest(x_admin_key, expected):
        logger.warning(f"Rejected admin request to {request.url.path}")
        raise HTTPException(status_code=403, detail="Admin access required")
    return True


def get_origin_key(request: Request) -> Optional[str]:
    """
    Client address used to scope free-trial claims.

    X-Forwarded-For is never read here: the client can write it. Behind a
    proxy, run uvicorn with --proxy-headers --forwarded-allow-ips=<proxy ip>
    so request.client carries the address the trusted proxy saw.
    """
    if request.client and request.client.host:
        return request.client.host
    return None
