import hmac
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from circadian.config import Settings, get_settings


def verify_admin_key(provided: str | None, expected: str) -> bool:
    """Constant-time key comparison. An unset expected key rejects everything."""
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode(), provided.encode())


async def require_admin(
    settings: Annotated[Settings, Depends(get_settings)],
    x_admin_key: Annotated[str | None, Header()] = None,
) -> None:
    """Dependency guarding operator routes with the X-Admin-Key header."""
    if not verify_admin_key(x_admin_key, settings.admin_api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin key",
        )
