"""Freesound authentication API endpoints."""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from recorder_sync.api.dependencies import get_auth_service
from recorder_sync.services.auth_service import AuthService
from recorder_sync.services.freesound_client import FreesoundError

router = APIRouter(prefix="/api/auth", tags=["auth"])


class AuthStatusResponse(BaseModel):
    """Authentication status response."""

    authenticated: bool
    username: Optional[str] = None


class LoginUrlResponse(BaseModel):
    """Authorization URL response."""

    url: str


class CallbackRequest(BaseModel):
    """OAuth callback request."""

    code: str


@router.get("/status", response_model=AuthStatusResponse)
async def get_auth_status(service: AuthService = Depends(get_auth_service)):
    """Get whether the app is signed in to Freesound."""
    authenticated = service.is_authenticated()
    return AuthStatusResponse(
        authenticated=authenticated,
        username=service.client.username if authenticated else None,
    )


@router.get("/login-url", response_model=LoginUrlResponse)
async def get_login_url(service: AuthService = Depends(get_auth_service)):
    """Get the Freesound authorization URL."""
    return LoginUrlResponse(url=service.get_login_url())


@router.post("/callback", response_model=AuthStatusResponse)
async def auth_callback(request: CallbackRequest, service: AuthService = Depends(get_auth_service)):
    """Exchange the OAuth authorization code and start syncing."""
    try:
        user = await service.complete_login(request.code)
    except FreesoundError as e:
        raise HTTPException(status_code=400, detail=f"Sign-in failed: {str(e)}")
    return AuthStatusResponse(authenticated=True, username=user.username)


@router.post("/logout", response_model=AuthStatusResponse)
async def logout(service: AuthService = Depends(get_auth_service)):
    """Sign out of Freesound."""
    await service.logout()
    return AuthStatusResponse(authenticated=False)
