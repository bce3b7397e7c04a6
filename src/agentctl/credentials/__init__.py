"""Credential resolution for agentctl."""
from __future__ import annotations

from .resolver import CredentialResolution, CredentialResolver, IncompleteCredentials
from .sources import (
    CredentialSource,
    ExplicitSource,
    LegacyXmlConfigSource,
    YamlConfigSource,
    collect,
)

__all__ = [
    "CredentialResolution",
    "CredentialResolver",
    "CredentialSource",
    "ExplicitSource",
    "IncompleteCredentials",
    "LegacyXmlConfigSource",
    "YamlConfigSource",
    "collect",
]
