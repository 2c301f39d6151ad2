"""PawNetwork - multi-tenant static hosting for .cats domains.

This FastAPI service lets users claim a .cats domain, upload a site and have
it served whenever a request arrives for that host.

Endpoints:
    POST /api/signup - Create an account, claim a domain, upload files
    POST /api/login - Exchange email/password for a token
    POST /api/update-site - Replace a site's files (owner only)
    GET  /api/analytics/{domain} - View count for a site (owner only)
    GET  /api/my-sites - List the caller's sites
    GET  /domains/{site_id}/{path} - Serve a site's file by site id
    GET  /health - Health check
    GET  /{path} - Host-based routing (portals, tenant sites, landing page)

Security:
    - Tokens are sent in the Authorization header ("<token>" or "Bearer <token>")
    - Uploads with absolute or traversing paths are refused as a whole
    - Files are stored under site ids, never under domain names

Uploads:
    Multipart forms. A file field named "zip" is read as an archive, any other
    file field is stored under its original filename.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, RedirectResponse, Response
from pydantic import BaseModel
from starlette.datastructures import FormData, UploadFile

from . import pages
from .errors import Forbidden, MissingField, PawError, StorageError, Unauthorized
from .registry import TenantRegistry, new_site_id, normalize_domain, normalize_email, validate_domain
from .router import RequestRouter, Route, RouteKind
from .site_files import FileSet, ResolvedFile, SiteFileRepository
from .state_manager import StateManager

_LOG = logging.getLogger(__name__)

ARCHIVE_FIELD: str = "zip"
"""Multipart field name whose uploads are treated as zip archives."""


# =============================================================================
# Request Models
# =============================================================================


class LoginRequest(BaseModel):
    """Request body for login.

    Attributes:
        email: Account email.
        password: Account password.
    """

    email: str | None = None
    password: str | None = None


# =============================================================================
# Helpers
# =============================================================================


def _registry(request: Request) -> TenantRegistry:
    return request.app.state.registry


def _files(request: Request) -> SiteFileRepository:
    return request.app.state.files


def require_user(request: Request, authorization: str | None = Header(None)) -> str:
    """Resolve the Authorization header to a registered email.

    Raises:
        Unauthorized: Missing header or unknown token.
    """
    if not authorization:
        raise Unauthorized()

    # Support both "Bearer <token>" and raw token
    token = authorization
    if authorization.startswith("Bearer "):
        token = authorization[7:]

    token = normalize_email(token)
    if not _registry(request).is_user(token):
        raise Unauthorized()
    return token


def _form_field(form: FormData, name: str) -> str:
    value = form.get(name)
    if not isinstance(value, str) or not value.strip():
        raise MissingField(name)
    return value


async def collect_files(form: FormData) -> FileSet:
    """Build a FileSet from every file field of a multipart form.

    Raises:
        MalformedArchive: Any archive or filename is unsafe or corrupt.
    """
    file_set = FileSet()
    for field_name, value in form.multi_items():
        if not isinstance(value, UploadFile):
            continue
        content = await value.read()
        # Browsers submit empty file inputs as a nameless empty part
        if not value.filename and not content:
            continue
        if field_name == ARCHIVE_FIELD:
            await asyncio.to_thread(file_set.add_archive, content)
        else:
            file_set.add_file(value.filename or "", content)
    return file_set


def _discard_storage(files: SiteFileRepository, site_id: str) -> None:
    try:
        files.discard(site_id)
    except OSError:
        _LOG.warning("Could not discard storage for site %s", site_id, exc_info=True)


def _page_response(name: str, status_code: int = 200) -> HTMLResponse:
    content = pages.load_page(name)
    if content is None:
        return HTMLResponse(pages.PAGE_MISSING_HTML, status_code=503)
    return HTMLResponse(content, status_code=status_code)


def _file_response(resolved: ResolvedFile) -> FileResponse:
    return FileResponse(resolved.location)


def _site_summaries(registry: TenantRegistry, email: str) -> list[dict]:
    return [
        {
            "domain": site.domain,
            "siteId": site.site_id,
            "views": registry.views(site.domain),
            "created": site.created_at,
            "updated": site.updated_at,
        }
        for site in registry.sites_owned_by(email)
    ]


def route_response(route: Route) -> Response:
    """Turn a routing decision into an HTTP response."""
    if route.kind is RouteKind.PAGE:
        return _page_response(route.page)
    if route.kind is RouteKind.REDIRECT:
        return RedirectResponse(route.location, status_code=route.status_code)
    if route.kind is RouteKind.SITE_FILE:
        return _file_response(route.file)
    if route.kind is RouteKind.SITE_NOT_FOUND:
        return HTMLResponse(pages.render_site_not_found(route.domain), status_code=route.status_code)
    return HTMLResponse(pages.FILE_NOT_FOUND_HTML, status_code=route.status_code)


# =============================================================================
# Application Factory
# =============================================================================


def create_app(
    store: StateManager | None = None,
    files: SiteFileRepository | None = None,
) -> FastAPI:
    """Build the application with its registry, file repository and router.

    Args:
        store: Persistence store, defaults to the database at PAW_DB_PATH.
        files: Site file repository, defaults to PAW_SITES_DIR.
    """
    store = store or StateManager()
    files = files or SiteFileRepository()
    registry = TenantRegistry(store)

    app = FastAPI(title="PawNetwork", version="1.0.0")
    app.state.store = store
    app.state.files = files
    app.state.registry = registry
    app.state.router = RequestRouter(registry, files)

    @app.exception_handler(PawError)
    async def paw_error_handler(request: Request, exc: PawError) -> JSONResponse:
        if isinstance(exc, StorageError):
            # Internal paths stay in the log
            _LOG.error("Storage failure on %s %s: %s", request.method, request.url.path, exc.message)
            return JSONResponse(
                {"success": False, "error": "Internal server error"},
                status_code=500,
            )
        return JSONResponse({"success": False, "error": exc.message}, status_code=exc.status_code)

    # =========================================================================
    # Account Endpoints
    # =========================================================================

    @app.post("/api/signup")
    async def signup(request: Request) -> JSONResponse:
        """Create an account, claim a domain and publish the uploaded files.

        Files are staged under a fresh site id before the registration
        commits; a failed registration discards them again.
        """
        form = await request.form()
        email = normalize_email(_form_field(form, "email"))
        password = _form_field(form, "password")
        domain = validate_domain(normalize_domain(_form_field(form, "domain")))

        file_set = await collect_files(form)

        site_id = new_site_id()
        try:
            await asyncio.to_thread(files.allocate_site_storage, site_id)
            await asyncio.to_thread(files.replace_files, site_id, file_set)
            user, site = await asyncio.to_thread(registry.signup, email, password, domain, site_id)
        except BaseException:
            await asyncio.to_thread(_discard_storage, files, site_id)
            raise

        _LOG.info("Signup %s -> %s (%d files)", user.email, site.domain, len(file_set))
        return JSONResponse({
            "success": True,
            "token": user.email,
            "siteId": site.site_id,
            "domain": site.domain,
        })

    @app.post("/api/login")
    async def login(body: LoginRequest) -> JSONResponse:
        """Check credentials and return the token and owned domains."""
        if not body.email:
            raise MissingField("email")
        if not body.password:
            raise MissingField("password")

        user = await asyncio.to_thread(registry.authenticate, body.email, body.password)
        return JSONResponse({"success": True, "token": user.email, "domains": user.domains})

    # =========================================================================
    # Site Management Endpoints
    # =========================================================================

    @app.post("/api/update-site")
    async def update_site(request: Request, email: str = Depends(require_user)) -> JSONResponse:
        """Replace every file of a site the caller owns."""
        form = await request.form()
        site = await asyncio.to_thread(registry.lookup_site, _form_field(form, "domain"))
        if site.owner_email != email:
            raise Forbidden()

        file_set = await collect_files(form)
        await asyncio.to_thread(files.replace_files, site.site_id, file_set)
        updated_at = await asyncio.to_thread(registry.touch_site, site.domain)

        _LOG.info("Updated %s (%d files) for %s", site.domain, len(file_set), email)
        return JSONResponse({
            "success": True,
            "domain": site.domain,
            "siteId": site.site_id,
            "updated": updated_at,
        })

    @app.get("/api/analytics/{domain}")
    async def analytics(domain: str, email: str = Depends(require_user)) -> dict:
        """Get the view count for a site the caller owns."""
        site = await asyncio.to_thread(registry.lookup_site, domain)
        if site.owner_email != email:
            raise Forbidden()
        return {"views": await asyncio.to_thread(registry.views, site.domain)}

    @app.get("/api/my-sites")
    async def my_sites(email: str = Depends(require_user)) -> dict:
        """List the caller's sites with view counts."""
        return {"sites": await asyncio.to_thread(_site_summaries, registry, email)}

    # =========================================================================
    # Health Check
    # =========================================================================

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint for monitoring and load balancers."""
        return {"status": "healthy", "sites_count": await asyncio.to_thread(store.count_sites)}

    # =========================================================================
    # Static File Serving
    # =========================================================================

    @app.get("/domains/{site_id}")
    @app.get("/domains/{site_id}/{path:path}")
    async def serve_site_file(site_id: str, path: str = "") -> Response:
        """Serve a site's file by site id, falling back to its index.html."""
        site = await asyncio.to_thread(registry.lookup_site_by_id, site_id)
        resolved = await asyncio.to_thread(files.resolve_file, site.site_id, path)
        return _file_response(resolved)

    @app.get("/{path:path}")
    async def catch_all(request: Request, path: str = "") -> Response:
        """Route by Host header: portals, tenant sites, or the landing page."""
        route = await asyncio.to_thread(
            app.state.router.route,
            request.headers.get("host", ""),
            "/" + path,
            dict(request.query_params),
        )
        return route_response(route)

    return app
