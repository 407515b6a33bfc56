from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request

from murmur_api.core.security import decode_token
from murmur_api.store import EntityStore


def get_store(request: Request) -> EntityStore:
    return request.app.state.store


def get_current_user_id(authorization: str | None = Header(default=None)) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    if not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Invalid Authorization header")
    token = authorization.split(" ", 1)[1].strip()
    try:
        payload = decode_token(token)
    except Exception as e:  # noqa: BLE001
        raise HTTPException(status_code=401, detail="Invalid token") from e
    sub = str(payload.get("sub") or "").strip()
    if not sub:
        raise HTTPException(status_code=401, detail="Invalid token")
    return sub


CurrentUserId = Depends(get_current_user_id)
Store = Depends(get_store)
