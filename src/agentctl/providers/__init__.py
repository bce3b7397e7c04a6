"""Provider interfaces for agentctl."""
from __future__ import annotations

from .host import (
    CapabilityUnavailable,
    HostProvider,
    HostQueryError,
    PowerShellHostProvider,
    ServiceState,
)
from .installer import AgentInstaller, AgentInstallerError, Installer
from .transport import HttpxTransport, Transport, TransportError

__all__ = [
    "AgentInstaller",
    "AgentInstallerError",
    "CapabilityUnavailable",
    "HostProvider",
    "HostQueryError",
    "HttpxTransport",
    "Installer",
    "PowerShellHostProvider",
    "ServiceState",
    "Transport",
    "TransportError",
]
