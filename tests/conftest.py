"""Shared fixtures for PawNetwork tests."""

import pytest

from pawnet import config


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    """Use the minimum bcrypt cost so hashing does not dominate test time."""
    monkeypatch.setattr(config, "BCRYPT_ROUNDS", 4)
