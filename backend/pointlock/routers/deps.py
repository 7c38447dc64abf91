"""Request dependencies shared by routers."""

from fastapi import Header, HTTPException, status


async def get_current_user_id(x_user_id: str = Header(None, alias="X-User-Id")) -> str:
    """Caller identity as forwarded by the auth gateway in front of this service."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Not authenticated.")
    return x_user_id.strip()
