"""Tenant registry: users, their domains, and view counters.

Wraps the StateManager with input normalization, domain validation and
password hashing. Uniqueness of emails and domains is enforced atomically by
the store, so two concurrent signups can never both claim the same key.
"""

from __future__ import annotations

import logging
import uuid

from . import config
from .credentials import hash_password, verify_password
from .errors import InvalidCredentials, InvalidDomain, NotFound
from .state_manager import SiteRecord, StateManager, UserRecord

_LOG = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip()


def normalize_domain(domain: str) -> str:
    return (domain or "").strip().lower().rstrip(".")


def validate_domain(domain: str) -> str:
    """Check that a domain can be claimed by a tenant.

    Args:
        domain: Normalized domain name.

    Returns:
        The domain unchanged.

    Raises:
        InvalidDomain: Wrong suffix, bad label, too long, or reserved.
    """
    suffix = config.TENANT_SUFFIX
    if not domain.endswith(suffix) or len(domain) <= len(suffix):
        raise InvalidDomain(f"Domain must end with {suffix}")
    if len(domain) > config.MAX_DOMAIN_LENGTH:
        raise InvalidDomain("Domain is too long")
    if domain in config.RESERVED_HOSTS:
        raise InvalidDomain(f"Domain '{domain}' is reserved")

    labels = domain[: -len(suffix)].split(".")
    if not all(config.DOMAIN_LABEL_PATTERN.match(label) for label in labels):
        raise InvalidDomain("Domain must be lowercase letters, digits and hyphens")
    return domain


def new_site_id() -> str:
    """Generate an opaque site identifier."""
    return uuid.uuid4().hex


class TenantRegistry:
    """Registry of tenants and the sites they own."""

    def __init__(self, store: StateManager) -> None:
        self.store = store

    # =========================================================================
    # Registration
    # =========================================================================

    def register_user(self, email: str, password: str) -> UserRecord:
        """Register a user.

        Raises:
            DuplicateEmail: The email is already registered.
        """
        return self.store.add_user(normalize_email(email), hash_password(password))

    def register_site(self, domain: str, owner_email: str, site_id: str | None = None) -> SiteRecord:
        """Claim a domain for an existing user.

        Raises:
            InvalidDomain: The domain cannot be claimed.
            DuplicateDomain: The domain is already claimed.
            NotFound: The owner does not exist.
        """
        domain = validate_domain(normalize_domain(domain))
        return self.store.add_site(domain, normalize_email(owner_email), site_id or new_site_id())

    def signup(
        self,
        email: str,
        password: str,
        domain: str,
        site_id: str | None = None,
    ) -> tuple[UserRecord, SiteRecord]:
        """Register a user together with their first site.

        Raises:
            InvalidDomain: The domain cannot be claimed.
            DuplicateEmail: The email is already registered.
            DuplicateDomain: The domain is already claimed.
        """
        domain = validate_domain(normalize_domain(domain))
        return self.store.add_user_with_site(
            normalize_email(email),
            hash_password(password),
            domain,
            site_id or new_site_id(),
        )

    # =========================================================================
    # Authentication
    # =========================================================================

    def authenticate(self, email: str, password: str) -> UserRecord:
        """Check a user's password.

        Raises:
            InvalidCredentials: Unknown email or wrong password.
        """
        user = self.store.get_user(normalize_email(email))
        if user is None or not verify_password(password or "", user.password_hash):
            _LOG.info("Failed login for %s", email)
            raise InvalidCredentials()
        return user

    def is_user(self, email: str) -> bool:
        return bool(email) and self.store.user_exists(normalize_email(email))

    # =========================================================================
    # Lookups
    # =========================================================================

    def lookup_site(self, domain: str) -> SiteRecord:
        """Find a site by domain.

        Raises:
            NotFound: The domain is not registered.
        """
        site = self.store.get_site(normalize_domain(domain))
        if site is None:
            raise NotFound(f"Site '{domain}' not found")
        return site

    def lookup_site_by_id(self, site_id: str) -> SiteRecord:
        """Find a site by site_id.

        Raises:
            NotFound: No site has this id.
        """
        site = self.store.get_site_by_id(site_id)
        if site is None:
            raise NotFound("Site not found")
        return site

    def sites_owned_by(self, email: str) -> list[SiteRecord]:
        return self.store.list_sites_for_owner(normalize_email(email))

    def touch_site(self, domain: str) -> str:
        return self.store.touch_site(normalize_domain(domain))

    # =========================================================================
    # Analytics
    # =========================================================================

    def record_view(self, domain: str) -> int:
        return self.store.increment_views(normalize_domain(domain))

    def views(self, domain: str) -> int:
        return self.store.get_views(normalize_domain(domain))
