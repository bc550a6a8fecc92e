"""Request dependencies: optional Bearer API key and upload size guard."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, UploadFile, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from fruitlens.config import Settings

_bearer_scheme = HTTPBearer(auto_error=False)


def get_settings_from_request(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Reject the request unless it carries the configured Bearer key.

    With FRUITLENS_API_KEY unset, authentication is disabled.
    """
    expected = get_settings_from_request(request).api_key
    if expected is None:
        return

    supplied = credentials.credentials if credentials is not None else ""
    if not secrets.compare_digest(supplied.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def read_upload(file: UploadFile, max_file_size: int) -> bytes:
    """Read an uploaded file, refusing anything larger than ``max_file_size`` bytes."""
    data = await file.read(max_file_size + 1)
    if len(data) > max_file_size:
        raise HTTPException(
            status_code=413,
            detail=f"File exceeds {max_file_size} bytes",
        )
    return data
