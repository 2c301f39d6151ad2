"""Runtime configuration for PawNetwork.

All values are read once from the environment at import time.

Environment Variables:
    PORT: Port the HTTP server listens on (default: 3000)
    PAW_HOST: Interface to bind (default: 0.0.0.0)
    PAW_TENANT_SUFFIX: Reserved tenant suffix (default: .cats)
    PAW_BCRYPT_ROUNDS: bcrypt work factor (default: 10)
    PAW_LOG_LEVEL: Root log level (default: INFO)
"""

from __future__ import annotations

import os
import re

# =============================================================================
# Server
# =============================================================================

PORT: int = int(os.environ.get("PORT", "3000"))
"""Port the HTTP server listens on."""

HOST: str = os.environ.get("PAW_HOST", "0.0.0.0")
"""Interface the HTTP server binds to."""

LOG_LEVEL: str = os.environ.get("PAW_LOG_LEVEL", "INFO").upper()
"""Root log level name."""

# =============================================================================
# Tenant Space
# =============================================================================

TENANT_SUFFIX: str = os.environ.get("PAW_TENANT_SUFFIX", ".cats").lower()
"""Hostnames ending with this suffix belong to tenants."""

REGISTER_HOST: str = f"register{TENANT_SUFFIX}"
"""Host serving the registration portal."""

DASHBOARD_HOST: str = f"dashboard{TENANT_SUFFIX}"
"""Host serving the owner dashboard."""

RESERVED_HOSTS: frozenset[str] = frozenset({REGISTER_HOST, DASHBOARD_HOST})
"""Operator hosts that can never be claimed by a tenant."""

DOMAIN_LABEL_PATTERN: re.Pattern = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")
"""Regex for a single DNS label (lowercase alphanumeric with inner hyphens)."""

MAX_DOMAIN_LENGTH: int = 253
"""Maximum length of a full domain name."""

# =============================================================================
# Credentials
# =============================================================================

BCRYPT_ROUNDS: int = int(os.environ.get("PAW_BCRYPT_ROUNDS", "10"))
"""bcrypt cost factor. Stored hashes carry their own cost, so raising this is safe."""
