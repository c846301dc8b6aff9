"""
deps.py — Request dependencies
Callers are authenticated upstream; the user id arrives in X-User-Id.
"""

from fastapi import HTTPException, Request, status


async def get_user_id(request: Request) -> int:
    """
    FastAPI dependency — reads the caller's user id from the X-User-Id header.
    Raises HTTP 401 if the header is missing or not a positive integer.
    """
    raw = request.headers.get("X-User-Id")
    if not raw:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    try:
        user_id = int(raw)
    except ValueError:
        user_id = 0
    if user_id <= 0:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-Id header",
        )
    return user_id
