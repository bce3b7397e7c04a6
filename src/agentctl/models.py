"""Data models shared by the probe, credential resolver and install pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path

CREDENTIAL_FIELDS: tuple[str, ...] = ("api_url", "api_key", "service_key", "user_name")
REQUIRED_CREDENTIAL_FIELDS: tuple[str, ...] = ("api_key", "service_key", "user_name")


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


@dataclass(frozen=True, slots=True)
class PartialCredentials:
    """Credential fields gathered so far; any of them may be unset."""

    api_url: str | None = None
    api_key: str | None = None
    service_key: str | None = None
    user_name: str | None = None

    def __post_init__(self) -> None:
        """Treat blank strings as unset."""
        for item in fields(self):
            object.__setattr__(self, item.name, _clean(getattr(self, item.name)))

    def missing_fields(self) -> tuple[str, ...]:
        """Return required fields that are still unset."""
        return tuple(name for name in REQUIRED_CREDENTIAL_FIELDS if getattr(self, name) is None)

    @property
    def is_complete(self) -> bool:
        """Return ``True`` when every required field is populated."""
        return not self.missing_fields()

    def unset_fields(self) -> tuple[str, ...]:
        """Return every credential field (required or not) that is unset."""
        return tuple(name for name in CREDENTIAL_FIELDS if getattr(self, name) is None)

    def merged_with(self, other: PartialCredentials) -> PartialCredentials:
        """Return a copy with unset fields filled from *other*.

        Fields already populated here always win.
        """
        updates = {
            name: getattr(other, name)
            for name in self.unset_fields()
            if getattr(other, name) is not None
        }
        return replace(self, **updates) if updates else self

    def finalize(self) -> Credentials:
        """Freeze into :class:`Credentials`; raises when incomplete."""
        missing = self.missing_fields()
        if missing:
            raise ValueError(f"Credentials are incomplete: missing {', '.join(missing)}.")
        return Credentials(
            api_url=self.api_url,
            api_key=self.api_key or "",
            service_key=self.service_key or "",
            user_name=self.user_name or "",
        )


@dataclass(frozen=True, slots=True)
class Credentials:
    """Complete credential set for the distribution service.

    ``api_url`` may be ``None``; the URL normaliser supplies the default.
    """

    api_url: str | None
    api_key: str
    service_key: str
    user_name: str

    def __post_init__(self) -> None:
        """Reject incomplete credential sets."""
        missing = [name for name in REQUIRED_CREDENTIAL_FIELDS if not getattr(self, name).strip()]
        if missing:
            raise ValueError(f"Credentials are incomplete: missing {', '.join(missing)}.")

    def __repr__(self) -> str:
        """Mask secrets in debug output."""
        return (
            f"Credentials(api_url={self.api_url!r}, api_key='***', "
            f"service_key='***', user_name={self.user_name!r})"
        )


@dataclass(frozen=True, slots=True)
class PriorInstallationRecord:
    """Snapshot of an installed agent's registry entry."""

    version: str | None
    install_directory: Path | None = None
    data_directory: Path | None = None

    @property
    def has_version(self) -> bool:
        """Return ``True`` when the record carries a version string."""
        return bool(self.version and self.version.strip())


@dataclass(frozen=True, slots=True)
class ApplicationPoolInfo:
    """An IIS application pool and its managed runtime version."""

    name: str
    managed_runtime_version: str


@dataclass(frozen=True, slots=True)
class InstallRequest:
    """Validated input to the install pipeline."""

    credentials: Credentials
    work_directory: Path

    def __post_init__(self) -> None:
        """Require a complete :class:`Credentials` instance."""
        if not isinstance(self.credentials, Credentials):
            raise ValueError("InstallRequest requires complete Credentials.")


class OutcomeKind(str, Enum):
    """Terminal states of an install run."""

    INELIGIBLE = "ineligible"
    MISSING_CREDENTIALS = "missing-credentials"
    DOWNLOAD_FAILED = "download-failed"
    EXTRACT_FAILED = "extract-failed"
    INSTALL_FAILED = "install-failed"
    SUCCESS = "success"

    @property
    def is_failure(self) -> bool:
        """Return ``True`` for outcomes that should terminate non-zero."""
        return self not in {OutcomeKind.SUCCESS, OutcomeKind.INELIGIBLE}


@dataclass(frozen=True, slots=True)
class InstallOutcome:
    """Tagged result of an install run."""

    kind: OutcomeKind
    detail: str | None = None
    version: str | None = None
    missing_fields: tuple[str, ...] = ()
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def succeeded(self) -> bool:
        """Return ``True`` when the agent is installed."""
        return self.kind is OutcomeKind.SUCCESS

    def with_warnings(self, *warnings: str) -> InstallOutcome:
        """Return a copy with *warnings* appended."""
        if not warnings:
            return self
        return replace(self, warnings=(*self.warnings, *warnings))


__all__ = [
    "CREDENTIAL_FIELDS",
    "REQUIRED_CREDENTIAL_FIELDS",
    "ApplicationPoolInfo",
    "Credentials",
    "InstallOutcome",
    "InstallRequest",
    "OutcomeKind",
    "PartialCredentials",
    "PriorInstallationRecord",
]
