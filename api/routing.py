"""
api/routing.py -- The static route table consulted by the route guard.

Every API route is listed here by name with its auth policy. The table is
built once in create_app(), after all routers are included, and frozen.

Routes are collected from the app's own route list and from every router
create_app() includes. Newer FastAPI releases keep an included router as a
single lazy entry in app.routes, so its APIRoutes are only reachable through
the router object itself.

Startup fails (ConfigurationError) if:
  - a registered API route has no entry here, or
  - an entry here names a route that was never registered.
Either one means the policy and the app have drifted apart, and serving
traffic in that state could expose a route nobody meant to make public.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from fastapi import APIRouter, FastAPI
from fastapi.routing import APIRoute
from starlette.routing import BaseRoute

from auth.guard import RouteTable
from core.config import ConfigurationError

# route name -> requires_auth
ROUTE_POLICY: dict[str, bool] = {
    "healthz": False,
    "auth_register": False,
    "auth_login": False,
    "auth_me": True,
}


def _iter_api_routes(routes: Iterable[BaseRoute]) -> Iterator[APIRoute]:
    for route in routes:
        if isinstance(route, APIRoute):
            yield route


def build_route_table(
    app: FastAPI,
    routers: Iterable[APIRouter] = (),
    policy: dict[str, bool] = ROUTE_POLICY,
) -> RouteTable:
    """Return a frozen RouteTable covering exactly the app's API routes."""
    api_routes = {route.name: route for route in _iter_api_routes(app.routes)}
    for router in routers:
        api_routes.update((route.name, route) for route in _iter_api_routes(router.routes))

    unlisted = sorted(set(api_routes) - set(policy))
    if unlisted:
        raise ConfigurationError(f"Routes missing from the auth policy: {', '.join(unlisted)}")
    stale = sorted(set(policy) - set(api_routes))
    if stale:
        raise ConfigurationError(f"Auth policy names unregistered routes: {', '.join(stale)}")

    table = RouteTable()
    for name, requires_auth in policy.items():
        table.add(name, api_routes[name].endpoint, requires_auth=requires_auth)
    table.freeze()
    return table
