"""Wrapper around the vendor's silent agent installer."""
from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

LOGGER = logging.getLogger(__name__)


class AgentInstallerError(RuntimeError):
    """Raised when the installer process cannot be launched."""


class Installer(Protocol):
    """Run the installer and return its exit code."""

    def run(self, args: Sequence[str]) -> int:
        """Run the installer with *args* and block until it exits."""
        ...


@dataclass(slots=True)
class AgentInstaller:
    """Launch the installer executable and wait for it to finish.

    The exit code is informational only; callers verify the installation by
    re-reading the host's installation record.
    """

    timeout: float | None = None

    def run(self, args: Sequence[str]) -> int:
        """Run ``args`` synchronously and return the exit code."""
        if not args:
            raise AgentInstallerError("Installer command must not be empty.")
        try:
            result = self._run_install_command(args)
        except FileNotFoundError as exc:
            raise AgentInstallerError(f"Installer not found: {args[0]}") from exc
        except PermissionError as exc:
            raise AgentInstallerError(f"Installer is not executable: {args[0]}") from exc
        except OSError as exc:
            raise AgentInstallerError(f"Installer could not be started: {args[0]}: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise AgentInstallerError(
                f"Installer did not finish within {self.timeout}s."
            ) from exc
        if result.returncode != 0:
            output = (result.stderr or result.stdout or "").strip()
            LOGGER.debug("Installer exited %s: %s", result.returncode, output)
        return result.returncode

    def _run_install_command(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        """Execute the installer command (isolated for testing)."""
        return subprocess.run(  # noqa: S603
            list(args),
            check=False,
            capture_output=True,
            text=True,
            timeout=self.timeout,
        )


__all__ = ["AgentInstaller", "AgentInstallerError", "Installer"]
