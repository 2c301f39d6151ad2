"""PawNetwork - multi-tenant static site hosting for .cats domains."""
