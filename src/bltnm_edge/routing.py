"""Host-based routing for the landing, shop and dashboard sub-applications.

One deployment serves all three: the ``Host`` header decides which internal
path prefix a request is routed to. Rewrites change only the internal path;
legacy cart and product URLs on other hosts are redirected to the shop host.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal

from starlette.responses import RedirectResponse
from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger(__name__)

PASSTHROUGH_PREFIXES = frozenset({"/api", "/_next"})
FAVICON = "/favicon.ico"
SHOP_REDIRECT_PREFIXES = ("/cart/", "/products/")

Action = Literal["passthrough", "rewrite", "redirect"]


def is_passthrough(path: str, prefixes: frozenset[str] = PASSTHROUGH_PREFIXES) -> bool:
    """API, static and asset paths are served as-is on every host."""
    return (
        any(path.startswith(p) for p in prefixes)
        or "." in path
        or path == FAVICON
    )


@dataclass(frozen=True)
class HostRoutingRule:
    host_pattern: str
    path_prefix: str
    # "replace" routes every page to path_prefix, "prefix" prepends it once
    mode: Literal["replace", "prefix"] = "prefix"
    passthrough_prefixes: frozenset[str] = field(default=PASSTHROUGH_PREFIXES)

    def apply(self, path: str) -> str | None:
        """Internal path for *path*, or None when it is served unchanged."""
        if is_passthrough(path, self.passthrough_prefixes):
            return None
        if self.mode == "replace":
            return self.path_prefix
        if path.startswith(self.path_prefix):
            return None
        return f"{self.path_prefix}{path}"


@dataclass(frozen=True)
class RouteDecision:
    action: Action
    path: str
    location: str | None = None


def _strip_port(host: str) -> str:
    host = host.strip().lower()
    if host.startswith("["):
        return host
    return host.split(":", 1)[0]


class HostRouter:
    def __init__(self, root_domain: str, shop_host: str, dashboard_host: str) -> None:
        self.root_domain = root_domain
        self.shop_host = shop_host
        self.dashboard_host = dashboard_host
        self.root_hosts = (root_domain, f"www.{root_domain}")
        rules = [
            HostRoutingRule(root_domain, "/landing", mode="replace"),
            HostRoutingRule(f"www.{root_domain}", "/landing", mode="replace"),
            HostRoutingRule(shop_host, "/shop"),
            HostRoutingRule(dashboard_host, "/dashboard"),
        ]
        self.rules: dict[str, HostRoutingRule] = {r.host_pattern: r for r in rules}

    @classmethod
    def from_settings(cls, settings) -> HostRouter:
        return cls(settings.ROOT_DOMAIN, settings.SHOP_HOST, settings.DASHBOARD_HOST)

    def shop_redirect(self, host: str, path: str, query: str = "") -> str | None:
        if host == self.shop_host:
            return None
        if path == "/cart" or path.startswith(SHOP_REDIRECT_PREFIXES):
            suffix = f"?{query}" if query else ""
            return f"https://{self.shop_host}{path}{suffix}"
        return None

    def resolve(self, host: str, path: str, query: str = "") -> RouteDecision:
        host = _strip_port(host)

        location = self.shop_redirect(host, path, query)
        if location:
            return RouteDecision("redirect", path, location)

        rule = self.rules.get(host)
        if rule is None:
            return RouteDecision("passthrough", path)
        target = rule.apply(path)
        if target is None:
            return RouteDecision("passthrough", path)
        return RouteDecision("rewrite", target)

    def proper_url(self, path: str, current_host: str) -> str:
        """URL to link to *path* from *current_host*.

        Cross-subdomain targets become absolute URLs, everything else stays a
        relative path.
        """
        current_host = _strip_port(current_host)
        if current_host in self.root_hosts and path.startswith(("/products", "/cart", "/checkout")):
            return f"https://{self.shop_host}{path}"
        if current_host != self.dashboard_host:
            if path.startswith("/dashboard"):
                rest = path.replace("/dashboard", "", 1) or "/"
                return f"https://{self.dashboard_host}{rest}"
            if path.startswith(("/login", "/register")):
                return f"https://{self.dashboard_host}{path}"
        return path


class HostRoutingMiddleware:
    """ASGI middleware applying :meth:`HostRouter.resolve` before routing."""

    def __init__(self, app: ASGIApp, router: HostRouter) -> None:
        self.app = app
        self.router = router

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers") or [])
        host = headers.get(b"host", b"").decode("latin-1")
        path = scope["path"]
        query = scope.get("query_string", b"").decode("latin-1")

        decision = self.router.resolve(host, path, query)
        if decision.action == "redirect":
            logger.info("Redirecting to shop host", extra={"host": host, "path": path})
            response = RedirectResponse(decision.location, status_code=307)
            await response(scope, receive, send)
            return

        if decision.action == "rewrite":
            scope = dict(scope)
            scope["state"] = {**scope.get("state", {}), "original_path": path}
            scope["path"] = decision.path
            scope["raw_path"] = decision.path.encode("utf-8")
        await self.app(scope, receive, send)
