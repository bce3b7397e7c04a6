"""Environment eligibility probe.

A host is an install target only when all of the following hold:

1. the IIS web-server feature is installed,
2. the IIS service (W3SVC) is installed and running; a stopped service is
   started once and re-checked,
3. at least one application pool targets a legacy .NET Framework runtime.

The probe never raises for a missing capability. Failures make the host
ineligible and are reported as check results so the CLI can explain why.
Note that check 2 may start the web-server service.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from .providers.host import CapabilityUnavailable, HostProvider, HostQueryError, ServiceState

LOGGER = logging.getLogger(__name__)

DEFAULT_LEGACY_RUNTIME_VERSIONS: tuple[str, ...] = ("v2.0", "v4.0")


@dataclass(slots=True, frozen=True)
class EligibilityCheck:
    """Outcome of a single eligibility check."""

    id: str
    passed: bool
    message: str
    warnings: Sequence[str] = field(default_factory=tuple)


@dataclass(slots=True, frozen=True)
class EligibilityReport:
    """Ordered check results for one probe run."""

    checks: Sequence[EligibilityCheck]

    @property
    def eligible(self) -> bool:
        """Return ``True`` when every check passed."""
        return bool(self.checks) and all(check.passed for check in self.checks)

    @property
    def warnings(self) -> tuple[str, ...]:
        """Return warnings collected across all checks."""
        return tuple(warning for check in self.checks for warning in check.warnings)

    @property
    def failed(self) -> EligibilityCheck | None:
        """Return the first failing check, if any."""
        for check in self.checks:
            if not check.passed:
                return check
        return None


class EnvironmentProbe:
    """Decide whether the host is an eligible install target."""

    def __init__(
        self,
        host: HostProvider,
        *,
        legacy_runtime_versions: Iterable[str] = DEFAULT_LEGACY_RUNTIME_VERSIONS,
        feature_name: str = "Web-Server",
        service_name: str = "W3SVC",
    ) -> None:
        """Bind the probe to a host provider and the legacy runtime markers."""
        self.host = host
        self.legacy_runtime_versions = frozenset(
            version.strip().lower() for version in legacy_runtime_versions if version.strip()
        )
        self.feature_name = feature_name
        self.service_name = service_name

    def is_eligible(self) -> bool:
        """Return ``True`` when the host is an install target."""
        return self.evaluate().eligible

    def evaluate(self) -> EligibilityReport:
        """Run the checks in order, stopping at the first failure."""
        checks: list[EligibilityCheck] = []
        for run_check in (self._check_feature, self._check_service, self._check_app_pools):
            check = run_check()
            checks.append(check)
            LOGGER.debug(
                "Eligibility check %s passed=%s: %s", check.id, check.passed, check.message
            )
            if not check.passed:
                break
        return EligibilityReport(checks=tuple(checks))

    # ------------------------------------------------------------------
    def _check_feature(self) -> EligibilityCheck:
        check_id = "web-server-feature"
        try:
            installed = self.host.feature_installed(self.feature_name)
        except HostQueryError as exc:
            return EligibilityCheck(
                id=check_id,
                passed=False,
                message=f"Could not query the {self.feature_name} feature.",
                warnings=(str(exc),),
            )
        if not installed:
            return EligibilityCheck(
                id=check_id,
                passed=False,
                message=f"Windows feature {self.feature_name} is not installed.",
            )
        return EligibilityCheck(
            id=check_id, passed=True, message=f"Windows feature {self.feature_name} is installed."
        )

    def _check_service(self) -> EligibilityCheck:
        check_id = "web-server-service"
        name = self.service_name
        try:
            state = self.host.service_status(name)
        except HostQueryError as exc:
            return EligibilityCheck(
                id=check_id,
                passed=False,
                message=f"Could not query service {name}.",
                warnings=(str(exc),),
            )
        if not state.is_installed:
            return EligibilityCheck(
                id=check_id, passed=False, message=f"Service {name} is not installed."
            )
        if state is ServiceState.RUNNING:
            return EligibilityCheck(id=check_id, passed=True, message=f"Service {name} is running.")

        notes = [f"Service {name} was {state.value}; attempted start."]
        try:
            self.host.start_service(name)
            state = self.host.service_status(name)
        except HostQueryError as exc:
            return EligibilityCheck(
                id=check_id,
                passed=False,
                message=f"Service {name} could not be started.",
                warnings=(*notes, str(exc)),
            )
        if state is not ServiceState.RUNNING:
            return EligibilityCheck(
                id=check_id,
                passed=False,
                message=f"Service {name} is {state.value} after start attempt.",
                warnings=tuple(notes),
            )
        return EligibilityCheck(
            id=check_id,
            passed=True,
            message=f"Service {name} started.",
            warnings=tuple(notes),
        )

    def _check_app_pools(self) -> EligibilityCheck:
        check_id = "legacy-app-pool"
        try:
            pools = self.host.list_app_pools()
        except CapabilityUnavailable as exc:
            return EligibilityCheck(
                id=check_id,
                passed=False,
                message="IIS administration module unavailable; cannot inspect app pools.",
                warnings=(f"capability unavailable: {exc}",),
            )
        except HostQueryError as exc:
            return EligibilityCheck(
                id=check_id,
                passed=False,
                message="Could not enumerate application pools.",
                warnings=(str(exc),),
            )
        matching = [
            pool.name
            for pool in pools
            if pool.managed_runtime_version.strip().lower() in self.legacy_runtime_versions
        ]
        if not matching:
            versions = ", ".join(sorted(self.legacy_runtime_versions))
            return EligibilityCheck(
                id=check_id,
                passed=False,
                message=f"No application pool uses a .NET Framework runtime ({versions}).",
            )
        return EligibilityCheck(
            id=check_id,
            passed=True,
            message=f"{len(matching)} application pool(s) use .NET Framework: "
            + ", ".join(sorted(matching)),
        )


__all__ = [
    "DEFAULT_LEGACY_RUNTIME_VERSIONS",
    "EligibilityCheck",
    "EligibilityReport",
    "EnvironmentProbe",
]
