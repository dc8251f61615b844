"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

enforce_route_policy() is installed as an app-wide dependency, so it runs for
every API route after routing has resolved which route matched. It looks the
route up in the static RouteTable by name and runs the RouteGuard:

  - public route:   passes, request.state.principal is None
  - authenticated:  passes, request.state.principal is the Principal
  - rejected:       HTTP 401, one body for every reason

get_principal() is the handler-side accessor for protected routes.

Layer rule: may import from fastapi (for Depends/HTTPException/Request)
because this module is part of the FastAPI dependency injection system.
Never imports from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.guard import RouteGuard
from auth.models import Principal

_UNAUTHENTICATED = {"code": "unauthenticated", "message": "Authentication required."}


def _unauthenticated() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=_UNAUTHENTICATED,
        headers={"WWW-Authenticate": "Bearer"},
    )


def enforce_route_policy(request: Request) -> None:
    """Run the route guard for the matched route. Raises HTTP 401 on rejection.

    Use as an app-wide dependency:
        app = FastAPI(dependencies=[Depends(enforce_route_policy)])
    """
    guard: RouteGuard = request.app.state.guard
    route = request.scope.get("route")
    route_id = getattr(route, "name", None)

    decision = guard.evaluate(route_id, request.headers.get("Authorization"))
    if not decision.allowed:
        raise _unauthenticated()
    request.state.principal = decision.principal


def get_principal(request: Request) -> Principal:
    """Return the principal the guard attached to this request.

    Use as a FastAPI dependency on protected routes:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_principal)): ...
    """
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise _unauthenticated()
    return principal
