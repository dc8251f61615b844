"""
api/routes/v1/auth.py -- Registration, login and identity REST endpoints.

Routes:
  POST /api/v1/auth/register  -- create a principal; 201 {accessToken, user}
  POST /api/v1/auth/login     -- authenticate; 200 {accessToken, user}
  GET  /api/v1/auth/me        -- the principal attached by the route guard

Auth policy lives in api/routing.py, not here. Each route's name= is its id
in the static route table.

Security:
  Register and login are rate-limited to 10 requests/minute per IP.
  Cache-Control: no-store on every response that carries a token.

Handlers are plain def, not async def: bcrypt is CPU-bound, so FastAPI runs
them in its threadpool instead of blocking the event loop.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import AUTH_RATE_LIMIT, limiter, rate_limit_exempt
from api.models import AuthResponse, ErrorDetail, ErrorResponse, LoginRequest, RegisterRequest, UserResponse
from auth.dependencies import get_principal
from auth.models import AuthFailure, AuthResult, FailureKind, Principal
from auth.service import AuthService

router = APIRouter()

_STATUS_BY_KIND = {
    FailureKind.VALIDATION: 422,
    FailureKind.CONFLICT: 409,
    FailureKind.NOT_FOUND: 404,
    FailureKind.UNAUTHORIZED: 401,
    FailureKind.UNAUTHENTICATED: 401,
}


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", name="auth_register", response_model=AuthResponse, status_code=201)
@limiter.limit(AUTH_RATE_LIMIT, exempt_when=rate_limit_exempt)  # must be BELOW @router so FastAPI registers the limited wrapper
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Register a new principal and return its first access token.

    409 with detail "username" or "email" when either is already taken,
    compared case-insensitively.
    """
    service: AuthService = request.app.state.auth_service
    result = service.register(body.username, body.email, body.password)
    return _auth_result_response(result, success_status=201)


@router.post("/auth/login", name="auth_login", response_model=AuthResponse)
@limiter.limit(AUTH_RATE_LIMIT, exempt_when=rate_limit_exempt)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username or email plus password.

    404 when no principal matches the identifier, 401 when the password is
    wrong.
    """
    service: AuthService = request.app.state.auth_service
    result = service.login(body.username_or_email, body.password)
    return _auth_result_response(result, success_status=200)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", name="auth_me", response_model=UserResponse)
def me(principal: Principal = Depends(get_principal)) -> UserResponse:
    """Return identity information for the currently authenticated principal."""
    return UserResponse.from_principal(principal)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _auth_result_response(result: AuthResult, success_status: int) -> JSONResponse:
    if isinstance(result, AuthFailure):
        resp = JSONResponse(
            status_code=_STATUS_BY_KIND[result.kind],
            content=ErrorResponse(
                error=ErrorDetail(code=result.kind.value, message=result.message, detail=result.field)
            ).model_dump(),
        )
    else:
        resp = JSONResponse(
            status_code=success_status,
            content=AuthResponse(
                access_token=result.token,
                user=UserResponse.from_principal(result.principal),
            ).model_dump(by_alias=True),
        )
    resp.headers["Cache-Control"] = "no-store"
    return resp
