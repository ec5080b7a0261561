"""Authentication API router (proxies to the issue backend).

Endpoints:
- POST /auth/login        -- citizen login
- POST /auth/signup       -- citizen registration
- POST /auth/admin-login  -- administrator login

The returned bearer token is kept by the browser and sent back on every
issue and submission request.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from app.dependencies import get_backend_client
from app.models.issue import AuthResponse, LoginRequest, SignupRequest
from app.services.backend_client import BackendClient, BackendError

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest, backend: BackendClient = Depends(get_backend_client)
) -> AuthResponse:
    try:
        return await backend.login(body)
    except BackendError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)


@router.post("/signup", response_model=AuthResponse)
async def signup(
    body: SignupRequest, backend: BackendClient = Depends(get_backend_client)
) -> AuthResponse:
    try:
        return await backend.signup(body)
    except BackendError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)


@router.post("/admin-login", response_model=AuthResponse)
async def admin_login(
    body: LoginRequest, backend: BackendClient = Depends(get_backend_client)
) -> AuthResponse:
    try:
        return await backend.admin_login(body)
    except BackendError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
