"""Host provider for querying IIS and the agent installation record."""
from __future__ import annotations

import json
import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from ..models import ApplicationPoolInfo, PriorInstallationRecord

LOGGER = logging.getLogger(__name__)

# Exit code our scripts use to signal that a PowerShell module failed to load.
CAPABILITY_EXIT_CODE = 3


class HostQueryError(RuntimeError):
    """Raised when a host query or action fails."""


class CapabilityUnavailable(HostQueryError):
    """Raised when the host lacks the tooling needed to answer a query."""


class ServiceState(str, Enum):
    """Coarse service states reported by ``Get-Service``."""

    RUNNING = "running"
    STOPPED = "stopped"
    PENDING = "pending"
    PAUSED = "paused"
    NOT_INSTALLED = "not-installed"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: str) -> ServiceState:
        """Translate ``Get-Service`` status text into a :class:`ServiceState`."""
        text = raw.strip().lower()
        if not text:
            return cls.NOT_INSTALLED
        if text == "running":
            return cls.RUNNING
        if text == "stopped":
            return cls.STOPPED
        if text == "paused":
            return cls.PAUSED
        if text.endswith("pending"):
            return cls.PENDING
        return cls.UNKNOWN

    @property
    def is_installed(self) -> bool:
        """Return ``True`` when the service exists on the host."""
        return self is not ServiceState.NOT_INSTALLED


class HostProvider(Protocol):
    """Read/query operations the installer needs from the host."""

    def feature_installed(self, name: str) -> bool:
        """Return ``True`` when the Windows feature *name* is installed."""
        ...

    def service_status(self, name: str) -> ServiceState:
        """Return the current state of service *name*."""
        ...

    def start_service(self, name: str) -> None:
        """Start service *name*, raising :class:`HostQueryError` on failure."""
        ...

    def list_app_pools(self) -> Sequence[ApplicationPoolInfo]:
        """Return the IIS application pools."""
        ...

    def read_install_record(self) -> PriorInstallationRecord | None:
        """Return the agent installation record, or ``None`` when absent."""
        ...


@dataclass(slots=True)
class PowerShellHostProvider:
    """Answer host queries by shelling out to Windows PowerShell."""

    registry_key: str = r"HKLM:\SOFTWARE\Contrast Security\dotnet"
    powershell_bin: str = "powershell.exe"
    timeout: float = 120.0

    def feature_installed(self, name: str) -> bool:
        """Return ``True`` when ``Get-WindowsFeature`` reports *name* installed."""
        script = (
            "Import-Module ServerManager -ErrorAction Stop; "
            f"(Get-WindowsFeature -Name {_quote(name)}).Installed"
        )
        output = self._query(script, label=f"feature {name}")
        return output.strip().lower() == "true"

    def service_status(self, name: str) -> ServiceState:
        """Return the state of service *name*."""
        script = (
            f"$svc = Get-Service -Name {_quote(name)} -ErrorAction SilentlyContinue; "
            "if ($svc) { $svc.Status.ToString() }"
        )
        return ServiceState.parse(self._query(script, label=f"service {name}"))

    def start_service(self, name: str) -> None:
        """Start service *name*."""
        self._query(
            f"Start-Service -Name {_quote(name)} -ErrorAction Stop",
            label=f"start {name}",
        )

    def list_app_pools(self) -> list[ApplicationPoolInfo]:
        """Return IIS application pools via the WebAdministration module."""
        script = (
            "try { Import-Module WebAdministration -ErrorAction Stop } "
            f"catch {{ exit {CAPABILITY_EXIT_CODE} }}; "
            "@(Get-ChildItem IIS:\\AppPools | "
            "Select-Object @{n='name';e={$_.Name}}, managedRuntimeVersion) "
            "| ConvertTo-Json -Compress"
        )
        payload = _parse_json(self._query(script, label="app pools"), label="app pools")
        pools: list[ApplicationPoolInfo] = []
        for entry in _as_entries(payload):
            name = entry.get("name")
            runtime = entry.get("managedRuntimeVersion")
            pools.append(
                ApplicationPoolInfo(
                    name=str(name or ""),
                    managed_runtime_version=str(runtime or ""),
                )
            )
        return pools

    def read_install_record(self) -> PriorInstallationRecord | None:
        """Return the agent installation record stored in the registry."""
        script = (
            f"$key = {_quote(self.registry_key)}; "
            "if (Test-Path -Path $key) { "
            "Get-ItemProperty -Path $key | "
            "Select-Object Version, InstallDirectory, DataDirectory | "
            "ConvertTo-Json -Compress }"
        )
        payload = _parse_json(self._query(script, label="install record"), label="install record")
        entries = _as_entries(payload)
        if not entries:
            return None
        entry = entries[0]
        version = entry.get("Version")
        return PriorInstallationRecord(
            version=str(version).strip() if version else None,
            install_directory=_optional_path(entry.get("InstallDirectory")),
            data_directory=_optional_path(entry.get("DataDirectory")),
        )

    # ------------------------------------------------------------------
    def _query(self, script: str, *, label: str) -> str:
        result = self._run_command(
            [
                self.powershell_bin,
                "-NoProfile",
                "-NonInteractive",
                "-ExecutionPolicy",
                "Bypass",
                "-Command",
                script,
            ]
        )
        if result.returncode == CAPABILITY_EXIT_CODE:
            raise CapabilityUnavailable(f"PowerShell module unavailable for {label}.")
        if result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise HostQueryError(f"{label} query failed (exit {result.returncode}): {message}")
        return result.stdout or ""

    def _run_command(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        """Execute PowerShell (isolated for testing)."""
        LOGGER.debug("Running host query: %s", args[-1])
        try:
            return subprocess.run(  # noqa: S603
                list(args),
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise CapabilityUnavailable(f"{args[0]} not found: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise HostQueryError(f"{args[0]} timed out after {self.timeout}s") from exc


def _quote(value: str) -> str:
    """Quote *value* as a single-quoted PowerShell literal."""
    return "'" + value.replace("'", "''") + "'"


def _parse_json(output: str, *, label: str) -> object:
    text = output.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise HostQueryError(f"Unexpected {label} output: {text[:200]}") from exc


def _as_entries(payload: object) -> list[dict[str, object]]:
    # ConvertTo-Json emits a bare object for single results.
    if payload is None:
        return []
    items = payload if isinstance(payload, list) else [payload]
    return [dict(item) for item in items if isinstance(item, dict)]


def _optional_path(value: object) -> Path | None:
    if isinstance(value, str) and value.strip():
        return Path(value.strip())
    return None


__all__ = [
    "CapabilityUnavailable",
    "HostProvider",
    "HostQueryError",
    "PowerShellHostProvider",
    "ServiceState",
]
