# internships/lib/sources/__init__.py
from __future__ import annotations

# Importing each adapter module registers its class; the set is closed on purpose.
from .ashby import AshbySource
from .exa import ExaSource
from .github_listings import GithubListingsSource
from .greenhouse import GreenhouseSource
from .lever import LeverSource
from .registry import all_kinds, get, register
from .stub import StubSource

__all__ = [
    "AshbySource",
    "ExaSource",
    "GithubListingsSource",
    "GreenhouseSource",
    "LeverSource",
    "StubSource",
    "all_kinds",
    "get",
    "register",
]
