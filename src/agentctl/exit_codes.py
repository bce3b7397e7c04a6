"""Process exit codes used by every agentctl command."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes enforced across the CLI."""

    # Agent installed, or nothing to do on an ineligible host.
    OK = 0
    # Bad configuration or incomplete credentials.
    VALIDATION = 2
    # ``check`` found the host ineligible.
    ENVIRONMENT = 3
    # Host query, download, extraction or installation failed.
    PROVIDER = 4
