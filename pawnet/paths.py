"""Centralized path definitions for PawNetwork.

All on-disk state lives under DATA_DIR so the service can be relocated by
setting a single environment variable.

Directory Structure:
    ./data/
    +-- pawnet.db              # SQLite database (users, sites, analytics)
    +-- sites/                 # Per-site storage keyed by site_id
        +-- <site_id>/
            +-- current -> releases/<release_id>
            +-- releases/
                +-- <release_id>/
                    +-- index.html
                    +-- ...

Usage:
    from pawnet.paths import SITES_DIR, site_dir

    root = site_dir("3f2a...")  # ./data/sites/3f2a...
"""

from __future__ import annotations

import os
import re
from pathlib import Path

# =============================================================================
# Base Paths
# =============================================================================

DATA_DIR: Path = Path(os.environ.get("PAW_DATA_DIR", "./data"))
"""Root directory for all PawNetwork data."""

DB_PATH: Path = Path(os.environ.get("PAW_DB_PATH", str(DATA_DIR / "pawnet.db")))
"""Path to the SQLite database for users, sites and analytics."""

SITES_DIR: Path = Path(os.environ.get("PAW_SITES_DIR", str(DATA_DIR / "sites")))
"""Directory containing one storage directory per site."""

STATIC_DIR: Path = Path(__file__).parent / "static"
"""Directory containing the operator application pages."""

# =============================================================================
# Site Paths
# =============================================================================

SITE_ID_PATTERN: re.Pattern = re.compile(r"^[0-9a-f]{32}$")
"""Valid site identifiers are uuid4 hex strings."""

CURRENT_LINK: str = "current"
"""Name of the symlink pointing at a site's live release."""

RELEASES_DIR: str = "releases"
"""Name of the directory holding a site's releases."""


def validate_site_id(site_id: str) -> str:
    """Validate a site_id before it is used as a path segment.

    Args:
        site_id: Candidate site identifier.

    Returns:
        The site_id unchanged.

    Raises:
        ValueError: If site_id is not a 32 character lowercase hex string.
    """
    if not isinstance(site_id, str) or not SITE_ID_PATTERN.match(site_id):
        raise ValueError(f"Invalid site_id: {site_id!r}")
    return site_id


def site_dir(site_id: str, base: Path | None = None) -> Path:
    """Get the storage directory for a site.

    Args:
        site_id: Site identifier (never a domain name).
        base: Sites root, defaults to SITES_DIR.

    Returns:
        Path to the site's storage directory.
    """
    return (base or SITES_DIR) / validate_site_id(site_id)


def releases_dir(site_id: str, base: Path | None = None) -> Path:
    """Get the releases directory for a site."""
    return site_dir(site_id, base) / RELEASES_DIR


def current_link(site_id: str, base: Path | None = None) -> Path:
    """Get the path of the symlink to a site's live release."""
    return site_dir(site_id, base) / CURRENT_LINK
