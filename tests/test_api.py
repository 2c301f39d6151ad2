"""Tests for the HTTP API and host-based serving."""

import asyncio
import io
import zipfile
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from pawnet.errors import WriteError
from pawnet.main import create_app
from pawnet.site_files import SiteFileRepository
from pawnet.state_manager import StateManager


def _zip(entries):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in entries.items():
            archive.writestr(name, content)
    return buffer.getvalue()


@pytest.fixture
def app(tmp_path):
    store = StateManager(db_path=tmp_path / "pawnet.db")
    app = create_app(store=store, files=SiteFileRepository(base_dir=tmp_path / "sites"))
    yield app
    store.close()


@pytest.fixture
def client(app):
    return TestClient(app)


def signup(client, email="a@b.com", password="pw", domain="kitty.cats", files=None):
    """POST /api/signup with a default single-page site."""
    if files is None:
        files = [("files", ("index.html", b"<h1>kitty</h1>", "text/html"))]
    return client.post(
        "/api/signup",
        data={"email": email, "password": password, "domain": domain},
        files=files,
    )


class TestSignup:
    """Tests for POST /api/signup."""

    def test_signup_success(self, client):
        """Signup returns the token, site id and domain."""
        response = signup(client)
        body = response.json()

        assert response.status_code == 200
        assert body["success"] is True
        assert body["token"] == "a@b.com"
        assert body["domain"] == "kitty.cats"
        assert len(body["siteId"]) == 32

    def test_signup_serves_uploaded_files(self, client):
        """Uploaded files are immediately served on the claimed host."""
        signup(client)
        response = client.get("/", headers={"host": "kitty.cats"})
        assert response.status_code == 200
        assert response.text == "<h1>kitty</h1>"
        assert response.headers["content-type"].startswith("text/html")

    def test_signup_with_zip(self, client):
        """The zip field is read as an archive and merged with other files."""
        archive = _zip({"index.html": b"zip index", "css/site.css": b"body {}"})
        signup(client, files=[
            ("zip", ("site.zip", archive, "application/zip")),
            ("files", ("about.html", b"about", "text/html")),
        ])

        assert client.get("/", headers={"host": "kitty.cats"}).text == "zip index"
        assert client.get("/about.html", headers={"host": "kitty.cats"}).text == "about"
        css = client.get("/css/site.css", headers={"host": "kitty.cats"})
        assert css.headers["content-type"].startswith("text/css")

    def test_duplicate_email(self, client):
        """A second signup with the same email fails with success false."""
        signup(client)
        body = signup(client, domain="other.cats").json()
        assert body == {"success": False, "error": "Email already exists"}

    def test_duplicate_domain(self, client):
        """A second signup for a taken domain fails and keeps the first site."""
        signup(client)
        body = signup(
            client,
            email="c@d.com",
            files=[("files", ("index.html", b"hijack", "text/html"))],
        ).json()

        assert body == {"success": False, "error": "Domain taken"}
        assert client.get("/", headers={"host": "kitty.cats"}).text == "<h1>kitty</h1>"

    def test_failed_signup_leaves_no_storage(self, client, app):
        """Storage staged for a failed signup is discarded."""
        signup(client)
        signup(client, email="c@d.com")
        site_dirs = list(app.state.files.base_dir.iterdir())
        assert len(site_dirs) == 1

    def test_invalid_domain(self, client):
        """Domains outside the tenant suffix are refused."""
        body = signup(client, domain="kitty.com").json()
        assert body["success"] is False
        assert ".cats" in body["error"]

    def test_missing_field(self, client):
        """Missing form fields return 400."""
        response = client.post("/api/signup", data={"email": "a@b.com", "password": "pw"})
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "domain is required"}

    def test_zip_slip_refuses_signup(self, client, app):
        """A traversing archive entry refuses the whole signup with nothing written."""
        archive = _zip({"index.html": b"ok", "../../escape.html": b"bad"})
        response = signup(client, files=[("zip", ("site.zip", archive, "application/zip"))])

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert not app.state.registry.is_user("a@b.com")
        assert not app.state.files.base_dir.exists() or not any(app.state.files.base_dir.iterdir())

    def test_corrupt_zip(self, client):
        """A corrupt archive is refused."""
        response = signup(client, files=[("zip", ("site.zip", b"garbage", "application/zip"))])
        assert response.status_code == 400

    def test_storage_failure_is_generic_500(self, client, app):
        """Storage errors hide internal details."""
        with patch.object(
            app.state.files,
            "replace_files",
            side_effect=WriteError("Could not write /secret/internal/path"),
        ):
            response = signup(client)

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Internal server error"}
        assert "/secret" not in response.text
        assert not app.state.registry.is_user("a@b.com")


class TestLogin:
    """Tests for POST /api/login."""

    def test_login_success_token_authorizes(self, client):
        """Correct credentials return a token that authorizes /api/my-sites."""
        signup(client)
        body = client.post("/api/login", json={"email": "a@b.com", "password": "pw"}).json()

        assert body["success"] is True
        assert body["domains"] == ["kitty.cats"]
        response = client.get("/api/my-sites", headers={"Authorization": body["token"]})
        assert response.status_code == 200
        assert response.json()["sites"][0]["domain"] == "kitty.cats"

    def test_login_wrong_password(self, client):
        """A wrong password returns the invalid credentials error."""
        signup(client)
        body = client.post("/api/login", json={"email": "a@b.com", "password": "nope"}).json()
        assert body == {"success": False, "error": "Invalid credentials"}

    def test_login_unknown_user(self, client):
        """Unknown users get the same error."""
        body = client.post("/api/login", json={"email": "x@y.com", "password": "pw"}).json()
        assert body == {"success": False, "error": "Invalid credentials"}

    def test_login_missing_password(self, client):
        """Missing fields return 400."""
        response = client.post("/api/login", json={"email": "a@b.com"})
        assert response.status_code == 400


class TestAuthorization:
    """Tests for token and ownership checks."""

    def test_missing_token(self, client):
        """No Authorization header is 401."""
        response = client.get("/api/my-sites")
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Login required"}

    def test_unknown_token(self, client):
        """An unrecognized token is 401."""
        response = client.get("/api/my-sites", headers={"Authorization": "ghost@b.com"})
        assert response.status_code == 401

    def test_bearer_prefix(self, client):
        """Bearer tokens are accepted."""
        signup(client)
        response = client.get("/api/my-sites", headers={"Authorization": "Bearer a@b.com"})
        assert response.status_code == 200

    def test_analytics_other_owner(self, client):
        """Reading another owner's analytics is 403."""
        signup(client)
        signup(client, email="c@d.com", domain="other.cats")
        response = client.get("/api/analytics/kitty.cats", headers={"Authorization": "c@d.com"})
        assert response.status_code == 403
        assert response.json() == {"success": False, "error": "Not your site"}

    def test_update_other_owner(self, client):
        """Updating another owner's site is 403 and changes nothing."""
        signup(client)
        signup(client, email="c@d.com", domain="other.cats")
        response = client.post(
            "/api/update-site",
            headers={"Authorization": "c@d.com"},
            data={"domain": "kitty.cats"},
            files=[("files", ("index.html", b"defaced", "text/html"))],
        )
        assert response.status_code == 403
        assert client.get("/", headers={"host": "kitty.cats"}).text == "<h1>kitty</h1>"

    def test_analytics_unknown_domain(self, client):
        """Analytics for an unregistered domain is 404."""
        signup(client)
        response = client.get("/api/analytics/nothing.cats", headers={"Authorization": "a@b.com"})
        assert response.status_code == 404


class TestUpdateSite:
    """Tests for POST /api/update-site."""

    def test_update_replaces_all_files(self, client):
        """The new upload fully replaces the old file set."""
        signup(client, files=[
            ("files", ("index.html", b"v1", "text/html")),
            ("files", ("old.html", b"old", "text/html")),
        ])
        response = client.post(
            "/api/update-site",
            headers={"Authorization": "a@b.com"},
            data={"domain": "kitty.cats"},
            files=[("zip", ("site.zip", _zip({"index.html": b"v2"}), "application/zip"))],
        )

        assert response.json()["success"] is True
        assert response.json()["updated"]
        assert client.get("/", headers={"host": "kitty.cats"}).text == "v2"
        # old.html is gone, so the index fallback is served
        assert client.get("/old.html", headers={"host": "kitty.cats"}).text == "v2"

    def test_update_zip_slip_keeps_old_files(self, client):
        """A rejected archive leaves the live site unchanged."""
        signup(client)
        response = client.post(
            "/api/update-site",
            headers={"Authorization": "a@b.com"},
            data={"domain": "kitty.cats"},
            files=[("zip", ("site.zip", _zip({"../evil.html": b"x"}), "application/zip"))],
        )
        assert response.status_code == 400
        assert client.get("/", headers={"host": "kitty.cats"}).text == "<h1>kitty</h1>"

    def test_update_unknown_domain(self, client):
        """Updating an unregistered domain is 404."""
        signup(client)
        response = client.post(
            "/api/update-site",
            headers={"Authorization": "a@b.com"},
            data={"domain": "nothing.cats"},
        )
        assert response.status_code == 404


class TestAnalyticsAndMySites:
    """Tests for analytics and my-sites."""

    def test_views_count_tenant_requests_only(self, client):
        """Only requests to the tenant host increment the counter."""
        signup(client)
        client.get("/", headers={"host": "kitty.cats"})
        client.get("/about", headers={"host": "kitty.cats"})
        client.get("/", headers={"host": "localhost"})
        client.get("/", headers={"host": "dashboard.cats"})

        response = client.get("/api/analytics/kitty.cats", headers={"Authorization": "a@b.com"})
        assert response.json() == {"views": 2}

    def test_my_sites_fields(self, client):
        """my-sites lists domain, site id, views and creation time."""
        site_id = signup(client).json()["siteId"]
        sites = client.get("/api/my-sites", headers={"Authorization": "a@b.com"}).json()["sites"]

        assert len(sites) == 1
        assert sites[0]["domain"] == "kitty.cats"
        assert sites[0]["siteId"] == site_id
        assert sites[0]["views"] == 0
        assert sites[0]["created"]

    def test_registry_reads_run_in_worker_threads(self, client, app):
        """Analytics and my-sites hand their registry reads to worker threads."""
        signup(client)
        registry = app.state.registry
        with patch("pawnet.main.asyncio.to_thread", wraps=asyncio.to_thread) as to_thread:
            client.get("/api/analytics/kitty.cats", headers={"Authorization": "a@b.com"})
            client.get("/api/my-sites", headers={"Authorization": "a@b.com"})

        called = [call.args[0] for call in to_thread.call_args_list]
        assert registry.lookup_site in called
        assert registry.views in called
        assert len(called) == 3


class TestHostRouting:
    """Tests for the catch-all host-based routing."""

    def test_unclaimed_domain_page(self, client):
        """An unclaimed tenant host gets a branded 404 naming the domain."""
        response = client.get("/", headers={"host": "unclaimed.cats"})
        assert response.status_code == 404
        assert "unclaimed.cats" in response.text
        assert 'href="http://register.cats/"' in response.text

    def test_not_found_page_escapes_domain(self, client):
        """The domain is HTML-escaped in the not-found page."""
        response = client.get("/", params={"domain": "<script>.cats"})
        assert "<script>" not in response.text

    def test_dashboard_page(self, client):
        """dashboard.cats serves the dashboard regardless of registry state."""
        response = client.get("/", headers={"host": "dashboard.cats"})
        assert response.status_code == 200
        assert "dashboard.cats" in response.text

    def test_register_page(self, client):
        """register.cats and /register.html serve the registration page."""
        by_host = client.get("/", headers={"host": "register.cats"})
        by_path = client.get("/register.html")
        assert by_host.status_code == 200
        assert by_host.text == by_path.text
        assert "/api/signup" in by_host.text

    def test_tenant_register_html_is_tenant_content(self, client):
        """A tenant host serves its own register.html, not the portal page."""
        signup(client, files=[
            ("files", ("index.html", b"<h1>kitty</h1>", "text/html")),
            ("files", ("register.html", b"TENANT-REGISTER", "text/html")),
        ])
        response = client.get("/register.html", headers={"host": "kitty.cats"})

        assert response.status_code == 200
        assert response.text == "TENANT-REGISTER"
        views = client.get("/api/analytics/kitty.cats", headers={"Authorization": "a@b.com"})
        assert views.json() == {"views": 1}

    def test_files_streamed_with_guessed_type(self, client):
        """Tenant files are streamed with a media type from their name."""
        signup(client, files=[
            ("files", ("index.html", b"<h1>kitty</h1>", "text/html")),
            ("files", ("site.css", b"body {}", "text/css")),
        ])
        response = client.get("/site.css", headers={"host": "kitty.cats"})

        assert response.status_code == 200
        assert response.content == b"body {}"
        assert response.headers["content-type"].startswith("text/css")
        assert response.headers["content-length"] == "7"

    def test_default_landing_page(self, client):
        """Other hosts get the landing page."""
        response = client.get("/", headers={"host": "localhost:3000"})
        assert response.status_code == 200
        assert "PawNetwork" in response.text

    def test_query_domain_redirect(self, client):
        """?domain= redirects to the site's canonical path, which serves the site."""
        site_id = signup(client).json()["siteId"]
        response = client.get("/", params={"domain": "kitty.cats"}, follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == f"/domains/{site_id}/"
        assert client.get(response.headers["location"]).text == "<h1>kitty</h1>"

    def test_domains_path_fallback_and_unknown_site(self, client):
        """/domains serves index fallback, unknown site ids are 404."""
        site_id = signup(client).json()["siteId"]
        assert client.get(f"/domains/{site_id}/missing.html").text == "<h1>kitty</h1>"
        assert client.get(f"/domains/{site_id}").text == "<h1>kitty</h1>"
        assert client.get(f"/domains/{'f' * 32}/").status_code == 404
        assert client.get("/domains/not-an-id/").status_code == 404

    def test_health(self, client):
        """Health reports the number of sites."""
        signup(client)
        assert client.get("/health").json() == {"status": "healthy", "sites_count": 1}
