"""Sequence the probe, credential resolver and install pipeline.

``Start -> ProbeEnvironment -> ResolveCredentials -> Pipeline -> Report``.
Every terminal state produces one status line and an exit code; errors from
the collaborators are converted here and never propagate further.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from packaging.version import InvalidVersion, Version

from .credentials import CredentialResolver, IncompleteCredentials
from .exit_codes import ExitCode
from .logging import OperationScope
from .models import (
    InstallOutcome,
    InstallRequest,
    OutcomeKind,
    PartialCredentials,
    PriorInstallationRecord,
)
from .pipeline import InstallPipeline
from .probe import EligibilityReport, EnvironmentProbe
from .providers.host import HostProvider, HostQueryError

LOGGER = logging.getLogger(__name__)

# CLI flag for each credential field, used in user-facing hints.
FIELD_FLAGS: Mapping[str, str] = {
    "api_url": "--url",
    "api_key": "--api-key",
    "service_key": "--service-key",
    "user_name": "--user-name",
}

_OUTCOME_EXIT_CODES: Mapping[OutcomeKind, ExitCode] = {
    OutcomeKind.SUCCESS: ExitCode.OK,
    OutcomeKind.INELIGIBLE: ExitCode.OK,
    OutcomeKind.MISSING_CREDENTIALS: ExitCode.VALIDATION,
    OutcomeKind.DOWNLOAD_FAILED: ExitCode.PROVIDER,
    OutcomeKind.EXTRACT_FAILED: ExitCode.PROVIDER,
    OutcomeKind.INSTALL_FAILED: ExitCode.PROVIDER,
}


@dataclass(frozen=True, slots=True)
class RunReport:
    """Everything the CLI needs to report a finished run."""

    outcome: InstallOutcome
    message: str
    exit_code: ExitCode
    eligibility: EligibilityReport | None = None
    prior_install: PriorInstallationRecord | None = None
    change: str | None = None
    provenance: Mapping[str, str] = field(default_factory=dict)

    @property
    def warnings(self) -> tuple[str, ...]:
        """Return warnings from the probe and the pipeline."""
        probe_warnings = self.eligibility.warnings if self.eligibility is not None else ()
        return (*probe_warnings, *self.outcome.warnings)


def classify_change(previous: str | None, current: str | None) -> str | None:
    """Describe the move from *previous* to *current* agent version."""
    if not current:
        return None
    if not previous:
        return "fresh"
    try:
        before, after = Version(previous), Version(current)
    except InvalidVersion:
        return "reinstall" if previous == current else "upgrade"
    if after > before:
        return "upgrade"
    if after < before:
        return "downgrade"
    return "reinstall"


def status_message(
    outcome: InstallOutcome,
    *,
    prior_install: PriorInstallationRecord | None = None,
    change: str | None = None,
) -> str:
    """Return the single status line for *outcome*."""
    kind = outcome.kind
    detail = outcome.detail or "no further detail"
    if kind is OutcomeKind.INELIGIBLE:
        return f"Host is not eligible ({detail}); nothing to do."
    if kind is OutcomeKind.MISSING_CREDENTIALS:
        flags = ", ".join(FIELD_FLAGS.get(name, name) for name in outcome.missing_fields)
        return (
            f"Missing credentials: {', '.join(outcome.missing_fields)}. "
            f"Provide {flags} or install over an existing agent configuration."
        )
    if kind is OutcomeKind.DOWNLOAD_FAILED:
        return f"Download failed: {detail}"
    if kind is OutcomeKind.EXTRACT_FAILED:
        return f"Extract failed: {detail}"
    if kind is OutcomeKind.INSTALL_FAILED:
        return f"Install failed: {detail}"
    previous = prior_install.version if prior_install is not None else None
    if change == "upgrade" and previous:
        return f"Agent upgraded from {previous} to {outcome.version}."
    if change == "downgrade" and previous:
        return f"Agent downgraded from {previous} to {outcome.version}."
    if change == "reinstall":
        return f"Agent {outcome.version} reinstalled."
    return f"Agent {outcome.version} installed."


class Orchestrator:
    """Drive one install run from probe to report."""

    def __init__(
        self,
        *,
        host: HostProvider,
        probe: EnvironmentProbe,
        resolver: CredentialResolver,
        pipeline: InstallPipeline,
        work_root: Path,
    ) -> None:
        """Wire the orchestrator to its collaborators."""
        self.host = host
        self.probe = probe
        self.resolver = resolver
        self.pipeline = pipeline
        self.work_root = work_root

    def execute(
        self,
        explicit: PartialCredentials,
        *,
        op: OperationScope | None = None,
    ) -> RunReport:
        """Run the install state machine and return its report."""
        eligibility = self.probe.evaluate()
        _step(
            op,
            "probe",
            status="success" if eligibility.eligible else "info",
            detail={check.id: check.passed for check in eligibility.checks},
        )
        if not eligibility.eligible:
            failed = eligibility.failed
            reason = failed.message if failed is not None else "no checks ran"
            return self._finish(
                InstallOutcome(OutcomeKind.INELIGIBLE, detail=reason),
                eligibility=eligibility,
            )

        prior_install, record_warning = self._read_prior_install()
        _step(
            op,
            "install-record.read",
            status="warning" if record_warning else "success",
            detail=record_warning or (prior_install.version if prior_install else "absent"),
        )

        try:
            resolution = self.resolver.resolve_detailed(explicit, prior_install)
        except IncompleteCredentials as exc:
            _step(op, "credentials.resolve", status="error", detail=list(exc.missing_fields))
            outcome = InstallOutcome(
                OutcomeKind.MISSING_CREDENTIALS,
                detail=str(exc),
                missing_fields=exc.missing_fields,
            )
            if record_warning:
                outcome = outcome.with_warnings(record_warning)
            return self._finish(outcome, eligibility=eligibility, prior_install=prior_install)
        _step(op, "credentials.resolve", detail=dict(resolution.provenance))

        outcome = self._run_pipeline(InstallRequest(resolution.credentials, self.work_root), op)
        if record_warning:
            outcome = outcome.with_warnings(record_warning)
        previous = prior_install.version if prior_install is not None else None
        return self._finish(
            outcome,
            eligibility=eligibility,
            prior_install=prior_install,
            change=classify_change(previous, outcome.version) if outcome.succeeded else None,
            provenance=resolution.provenance,
        )

    # ------------------------------------------------------------------
    def _read_prior_install(self) -> tuple[PriorInstallationRecord | None, str | None]:
        try:
            return self.host.read_install_record(), None
        except HostQueryError as exc:
            LOGGER.warning("Could not read the agent installation record: %s", exc)
            return None, f"install record unreadable: {exc}"

    def _run_pipeline(self, request: InstallRequest, op: OperationScope | None) -> InstallOutcome:
        try:
            return self.pipeline.run(request, op=op)
        except (HostQueryError, OSError) as exc:
            LOGGER.warning("Install pipeline aborted: %s", exc)
            return InstallOutcome(OutcomeKind.INSTALL_FAILED, detail=str(exc))

    def _finish(
        self,
        outcome: InstallOutcome,
        *,
        eligibility: EligibilityReport | None,
        prior_install: PriorInstallationRecord | None = None,
        change: str | None = None,
        provenance: Mapping[str, str] | None = None,
    ) -> RunReport:
        return RunReport(
            outcome=outcome,
            message=status_message(outcome, prior_install=prior_install, change=change),
            exit_code=_OUTCOME_EXIT_CODES[outcome.kind],
            eligibility=eligibility,
            prior_install=prior_install,
            change=change,
            provenance=dict(provenance or {}),
        )


def _step(
    op: OperationScope | None,
    name: str,
    *,
    status: str = "success",
    detail: object = None,
) -> None:
    if op is not None:
        op.add_step(name, status=status, detail=detail)


__all__ = [
    "FIELD_FLAGS",
    "Orchestrator",
    "RunReport",
    "classify_change",
    "status_message",
]
