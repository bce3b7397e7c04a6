"""Layered credential resolution.

Fields are resolved one at a time in a fixed order of precedence:

1. explicit values passed to the tool,
2. the structured YAML config under the prior installation's data directory,
3. the legacy XML config under the prior installation's install directory.

A field filled by a higher-precedence source is never overwritten. Whether
the result is complete is decided once, after every source has been read.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from ..models import CREDENTIAL_FIELDS, Credentials, PartialCredentials, PriorInstallationRecord
from .sources import (
    CredentialSource,
    ExplicitSource,
    LegacyXmlConfigSource,
    YamlConfigSource,
    collect,
)

LOGGER = logging.getLogger(__name__)

STRUCTURED_CONFIG_NAME = "contrast_security.yaml"
LEGACY_CONFIG_NAME = "DotnetAgentService.exe.config"


class IncompleteCredentials(RuntimeError):
    """Raised when no combination of sources yields a complete credential set."""

    def __init__(self, missing_fields: Sequence[str], partial: PartialCredentials) -> None:
        """Record which required fields remain unset."""
        self.missing_fields = tuple(missing_fields)
        self.partial = partial
        super().__init__(f"Missing credential fields: {', '.join(self.missing_fields)}.")


@dataclass(frozen=True, slots=True)
class CredentialResolution:
    """Resolved credentials plus the source each field came from."""

    credentials: Credentials
    provenance: dict[str, str] = field(default_factory=dict)
    consulted: tuple[str, ...] = ()


class CredentialResolver:
    """Merge credential sources in precedence order."""

    def __init__(
        self,
        *,
        structured_config: str = STRUCTURED_CONFIG_NAME,
        legacy_config: str = LEGACY_CONFIG_NAME,
    ) -> None:
        """Configure the file names looked up under a prior installation."""
        self.structured_config = structured_config
        self.legacy_config = legacy_config

    def sources_for(
        self,
        explicit: PartialCredentials,
        prior_install: PriorInstallationRecord | None,
    ) -> list[CredentialSource]:
        """Return the sources to consult, highest precedence first."""
        sources: list[CredentialSource] = [ExplicitSource(explicit)]
        if prior_install is None:
            return sources
        if prior_install.data_directory is not None:
            sources.append(YamlConfigSource(prior_install.data_directory / self.structured_config))
        if prior_install.install_directory is not None:
            sources.append(
                LegacyXmlConfigSource(prior_install.install_directory / self.legacy_config)
            )
        return sources

    def resolve(
        self,
        explicit: PartialCredentials,
        prior_install: PriorInstallationRecord | None,
    ) -> Credentials:
        """Return complete credentials or raise :class:`IncompleteCredentials`."""
        return self.resolve_detailed(explicit, prior_install).credentials

    def resolve_detailed(
        self,
        explicit: PartialCredentials,
        prior_install: PriorInstallationRecord | None,
    ) -> CredentialResolution:
        """Resolve credentials and report where each field came from."""
        if prior_install is None and not explicit.is_complete:
            raise IncompleteCredentials(explicit.missing_fields(), explicit)

        merged = PartialCredentials()
        provenance: dict[str, str] = {}
        consulted: list[str] = []
        for source in self.sources_for(explicit, prior_install):
            if not merged.unset_fields():
                break
            consulted.append(source.name)
            values = collect(source)
            for name in merged.unset_fields():
                if getattr(values, name) is not None:
                    provenance[name] = source.name
            merged = merged.merged_with(values)

        missing = merged.missing_fields()
        if missing:
            LOGGER.debug("Credential sources %s left %s unset", consulted, missing)
            raise IncompleteCredentials(missing, merged)
        return CredentialResolution(
            credentials=merged.finalize(),
            provenance={name: provenance[name] for name in CREDENTIAL_FIELDS if name in provenance},
            consulted=tuple(consulted),
        )


__all__ = [
    "CredentialResolution",
    "CredentialResolver",
    "IncompleteCredentials",
]
