"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register   -- create account; 201 with user + token pair
  POST /api/v1/auth/login      -- password login; 200 with user + token pair
  POST /api/v1/auth/refresh    -- rotate refresh token; 200 with new pair
  POST /api/v1/auth/logout     -- delete the session; 200
  GET  /api/v1/auth/me         -- current user (Bearer access token)

Every handler is a thin adapter: the pydantic body model validates shape,
AuthService does the work, and AuthError subclasses raised by the service are
rendered by the app-level exception handler (401 / 409 / 400 / 500).

Security:
  [H2] Every /auth route is rate-limited per IP (Settings.auth_rate_limit).
  [C1] login() equalizes timing inside AuthService -- do not pre-check the
       email here.
  [M5] Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import AUTH_RATE_LIMIT, limiter
from api.models import (
    AuthResponse,
    LoginRequest,
    MeResponse,
    MessageResponse,
    RefreshTokenRequest,
    RegisterRequest,
    UserResponse,
)
from auth.dependencies import get_auth_service, get_current_user
from auth.models import PublicUser
from auth.service import AuthService

# Auth policy:
# - POST /api/v1/auth/register: public, rate-limited
# - POST /api/v1/auth/login:    public, rate-limited
# - POST /api/v1/auth/refresh:  public (refresh token in body), rate-limited
# - POST /api/v1/auth/logout:   public (refresh token in body), rate-limited
# - GET  /api/v1/auth/me:       requires Bearer access token (get_current_user), rate-limited
router = APIRouter()


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
@limiter.limit(AUTH_RATE_LIMIT)  # [H2] must be BELOW @router so the registered endpoint is the limited wrapper
def register(
    request: Request,
    response: Response,
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Create an account and return it with a fresh access/refresh pair."""
    result = service.register(body.email, body.password, body.name)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return AuthResponse.from_result(result)


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(AUTH_RATE_LIMIT)  # [H2]
def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same 401 invalid_credentials.
    """
    result = service.login(body.email, body.password)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return AuthResponse.from_result(result)


@router.post("/auth/refresh", response_model=AuthResponse)
@limiter.limit(AUTH_RATE_LIMIT)  # [H2]
def refresh(
    request: Request,
    response: Response,
    body: RefreshTokenRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Exchange a refresh token for a new pair. The presented token dies."""
    result = service.refresh(body.refresh_token)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return AuthResponse.from_result(result)


@router.post("/auth/logout", response_model=MessageResponse)
@limiter.limit(AUTH_RATE_LIMIT)  # [H2]
def logout(
    request: Request,
    body: RefreshTokenRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """End the session bound to the refresh token. Succeeds even if already gone."""
    service.logout(body.refresh_token)
    return MessageResponse(message="Logged out successfully.")


@router.get("/auth/me", response_model=MeResponse)
@limiter.limit(AUTH_RATE_LIMIT)  # [H2]
def me(request: Request, current_user: PublicUser = Depends(get_current_user)) -> MeResponse:
    """Return the user the presented access token was issued for."""
    return MeResponse(user=UserResponse.from_domain(current_user))
