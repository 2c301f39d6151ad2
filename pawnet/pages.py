"""HTML for operator pages and not-found responses."""

from __future__ import annotations

import html
from pathlib import Path

from . import config
from .paths import STATIC_DIR

SITE_NOT_FOUND_TEMPLATE: str = """<!DOCTYPE html>
<html>
<head>
    <title>404 - Site Not Found</title>
    <style>
        body {{ font-family: Arial, sans-serif; margin: 40px; background: #fff5f5; text-align: center; }}
        .container {{ max-width: 600px; margin: 0 auto; }}
        h1 {{ color: #ff6b81; font-size: 48px; margin: 20px 0; }}
        .cat {{ font-size: 80px; margin: 20px 0; }}
        .domain {{ background: #ff6b81; color: white; padding: 5px 10px; border-radius: 5px; }}
        a {{ color: #ff6b81; text-decoration: none; font-weight: bold; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="cat">&#128575;</div>
        <h1>404</h1>
        <h2>This {suffix} site doesn't exist yet!</h2>
        <p>The domain <span class="domain">{domain}</span> isn't registered.</p>
        <p>Visit <a href="http://{register_host}/">{register_host}</a> to claim it!</p>
    </div>
</body>
</html>
"""

FILE_NOT_FOUND_HTML: str = "<!DOCTYPE html><html><body><h1>404 - File not found</h1></body></html>"

PAGE_MISSING_HTML: str = "<h1>Page not configured</h1>"


def render_site_not_found(domain: str) -> str:
    """Branded not-found page for an unclaimed tenant domain."""
    return SITE_NOT_FOUND_TEMPLATE.format(
        suffix=html.escape(config.TENANT_SUFFIX),
        domain=html.escape(domain),
        register_host=html.escape(config.REGISTER_HOST),
    )


def load_page(name: str, static_dir: Path | None = None) -> str | None:
    """Read an operator page from the static directory.

    Returns:
        Page HTML, or None if the page is not installed.
    """
    page = (static_dir or STATIC_DIR) / name
    if not page.is_file():
        return None
    return page.read_text(encoding="utf-8")
