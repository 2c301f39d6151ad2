"""Host-based request routing.

Every non-API request is resolved by one state machine keyed on
(host, path, query). The router decides *what* to serve and leaves building
the HTTP response to the web layer, so it has no FastAPI dependency.

Resolution order (first match wins):
    1. Portal hosts (register.cats, dashboard.cats) -> operator page
    2. ?domain=<name>.cats -> redirect to /domains/<site_id>/, or not-found
    3. <name>.cats host -> count a view, serve the site's file, or not-found
    4. Anything else -> root application page (or /register.html)
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass

from . import config
from .errors import FileNotFound, NotFound
from .registry import TenantRegistry, normalize_domain
from .site_files import ResolvedFile, SiteFileRepository
from .state_manager import SiteRecord

PAGE_INDEX: str = "index.html"
PAGE_REGISTER: str = "register.html"
PAGE_DASHBOARD: str = "dashboard.html"


class RouteKind(enum.Enum):
    PAGE = "page"
    REDIRECT = "redirect"
    SITE_FILE = "site_file"
    SITE_NOT_FOUND = "site_not_found"
    FILE_NOT_FOUND = "file_not_found"


@dataclass(frozen=True)
class Route:
    """Outcome of routing one request.

    Attributes:
        kind: Which branch of the state machine matched.
        status_code: HTTP status to respond with.
        page: Operator page name for PAGE routes.
        location: Redirect target for REDIRECT routes.
        file: Resolved tenant file for SITE_FILE routes.
        domain: Tenant domain involved, if any.
        site: Registered site, if one was found.
    """

    kind: RouteKind
    status_code: int = 200
    page: str | None = None
    location: str | None = None
    file: ResolvedFile | None = None
    domain: str | None = None
    site: SiteRecord | None = None


def normalize_host(host: str | None) -> str:
    """Lowercase a Host header value and strip any port and trailing dot."""
    host = (host or "").strip().lower()
    if host.startswith("["):
        # IPv6 literal, e.g. "[::1]:3000"
        end = host.find("]")
        host = host[: end + 1] if end != -1 else host
    else:
        name, sep, port = host.rpartition(":")
        if sep and port.isdigit():
            host = name
    return host.rstrip(".")


def site_url(site_id: str) -> str:
    """Canonical path serving a site by its id."""
    return f"/domains/{site_id}/"


class RequestRouter:
    """Resolves requests to operator pages, tenant files or not-found pages."""

    def __init__(
        self,
        registry: TenantRegistry,
        files: SiteFileRepository,
        tenant_suffix: str | None = None,
    ) -> None:
        self.registry = registry
        self.files = files
        self.tenant_suffix = (tenant_suffix or config.TENANT_SUFFIX).lower()
        self.portal_pages: dict[str, str] = {
            config.REGISTER_HOST: PAGE_REGISTER,
            config.DASHBOARD_HOST: PAGE_DASHBOARD,
        }
        # Pages reachable by path on non-tenant hosts
        self.root_pages: dict[str, str] = {
            "/" + PAGE_REGISTER: PAGE_REGISTER,
        }

    def is_tenant_host(self, host: str) -> bool:
        return host.endswith(self.tenant_suffix) and len(host) > len(self.tenant_suffix)

    def route(self, host: str | None, path: str | None, query: Mapping[str, str] | None = None) -> Route:
        """Resolve one request.

        Args:
            host: Raw Host header value.
            path: Request path, e.g. "/about.html".
            query: Query parameters.

        Returns:
            The Route to serve.
        """
        host = normalize_host(host)

        page = self.portal_pages.get(host)
        if page is not None:
            return Route(RouteKind.PAGE, page=page)

        query_domain = normalize_domain((query or {}).get("domain", ""))
        if query_domain and self.is_tenant_host(query_domain):
            return self._redirect_to_site(query_domain)

        if self.is_tenant_host(host):
            return self._serve_tenant(host, path)

        return Route(RouteKind.PAGE, page=self.root_pages.get(path or "/", PAGE_INDEX))

    def _redirect_to_site(self, domain: str) -> Route:
        try:
            site = self.registry.lookup_site(domain)
        except NotFound:
            return Route(RouteKind.SITE_NOT_FOUND, status_code=404, domain=domain)
        return Route(
            RouteKind.REDIRECT,
            status_code=302,
            location=site_url(site.site_id),
            domain=domain,
            site=site,
        )

    def _serve_tenant(self, host: str, path: str | None) -> Route:
        try:
            site = self.registry.lookup_site(host)
        except NotFound:
            return Route(RouteKind.SITE_NOT_FOUND, status_code=404, domain=host)

        self.registry.record_view(site.domain)

        try:
            resolved = self.files.resolve_file(site.site_id, path)
        except FileNotFound:
            return Route(RouteKind.FILE_NOT_FOUND, status_code=404, domain=host, site=site)
        return Route(RouteKind.SITE_FILE, file=resolved, domain=host, site=site)
