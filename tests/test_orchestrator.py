"""Tests for the install orchestrator."""
from __future__ import annotations

from pathlib import Path

import httpx
import pytest
from fakes import FakeHost, FakeInstaller, FakeTransport

from agentctl.credentials import CredentialResolver
from agentctl.exit_codes import ExitCode
from agentctl.logging import OperationScope
from agentctl.models import (
    InstallOutcome,
    OutcomeKind,
    PartialCredentials,
    PriorInstallationRecord,
)
from agentctl.orchestrator import Orchestrator, classify_change, status_message
from agentctl.pipeline import InstallPipeline
from agentctl.probe import EnvironmentProbe
from agentctl.providers.host import HostQueryError
from agentctl.providers.transport import HttpxTransport, TransportError

EXPLICIT = PartialCredentials(
    api_url="https://x.example", api_key="key", service_key="svc", user_name="agent"
)


def _orchestrator(
    host: FakeHost,
    transport: FakeTransport,
    installer: FakeInstaller,
    work_root: Path,
) -> Orchestrator:
    return Orchestrator(
        host=host,
        probe=EnvironmentProbe(host),
        resolver=CredentialResolver(),
        pipeline=InstallPipeline(host, transport, installer),
        work_root=work_root,
    )


def test_fresh_install(host: FakeHost, agent_zip: bytes, work_root: Path) -> None:
    """An eligible host with explicit credentials gets the agent."""
    installer = FakeInstaller(host, version="5.1.0")
    report = _orchestrator(host, FakeTransport(agent_zip), installer, work_root).execute(
        EXPLICIT
    )
    assert report.outcome.kind is OutcomeKind.SUCCESS
    assert report.exit_code is ExitCode.OK
    assert report.change == "fresh"
    assert report.message == "Agent 5.1.0 installed."
    assert report.provenance["api_key"] == "explicit"
    assert list(work_root.iterdir()) == []


def test_second_run_is_idempotent(host: FakeHost, agent_zip: bytes, work_root: Path) -> None:
    """Running twice reinstalls the same version and leaves nothing behind."""
    installer = FakeInstaller(host, version="5.1.0")
    orchestrator = _orchestrator(host, FakeTransport(agent_zip), installer, work_root)
    first = orchestrator.execute(EXPLICIT)
    second = orchestrator.execute(EXPLICIT)

    assert first.outcome.kind is OutcomeKind.SUCCESS
    assert second.outcome.kind is OutcomeKind.SUCCESS
    assert second.outcome.version == first.outcome.version
    assert second.change == "reinstall"
    assert second.message == "Agent 5.1.0 reinstalled."
    assert len(installer.commands) == 2
    assert list(work_root.iterdir()) == []


def test_upgrade_reuses_stored_credentials(agent_zip: bytes, tmp_path: Path) -> None:
    """Without explicit credentials the prior configuration is reused."""
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "contrast_security.yaml").write_text(
        "api:\n  url: https://stored.example/Contrast\n  api_key: k\n"
        "  service_key: s\n  user_name: u\n",
        encoding="utf-8",
    )
    host = FakeHost(record=PriorInstallationRecord(version="5.0.0", data_directory=data_dir))
    transport = FakeTransport(agent_zip)
    work_root = tmp_path / "work"
    report = _orchestrator(
        host, transport, FakeInstaller(host, version="5.1.0"), work_root
    ).execute(PartialCredentials())

    assert report.outcome.kind is OutcomeKind.SUCCESS
    assert report.change == "upgrade"
    assert report.message == "Agent upgraded from 5.0.0 to 5.1.0."
    assert transport.requests[0][0].startswith("https://stored.example/Contrast/api/")
    assert report.provenance["api_key"] == "structured-config"


def test_ineligible_host_exits_cleanly(agent_zip: bytes, work_root: Path) -> None:
    """An ineligible host is a successful no-op."""
    host = FakeHost(feature=False)
    transport = FakeTransport(agent_zip)
    installer = FakeInstaller(host)
    report = _orchestrator(host, transport, installer, work_root).execute(EXPLICIT)

    assert report.outcome.kind is OutcomeKind.INELIGIBLE
    assert report.exit_code is ExitCode.OK
    assert report.message.startswith("Host is not eligible (")
    assert transport.requests == []
    assert installer.commands == []
    assert "record" not in host.calls


def test_missing_credentials(host: FakeHost, agent_zip: bytes, work_root: Path) -> None:
    """Missing credentials stop the run before any download."""
    transport = FakeTransport(agent_zip)
    report = _orchestrator(host, transport, FakeInstaller(host), work_root).execute(
        PartialCredentials(api_key="k")
    )
    assert report.outcome.kind is OutcomeKind.MISSING_CREDENTIALS
    assert report.exit_code is ExitCode.VALIDATION
    assert report.outcome.missing_fields == ("service_key", "user_name")
    assert "--service-key, --user-name" in report.message
    assert transport.requests == []


def test_download_failure_maps_to_provider_exit(host: FakeHost, work_root: Path) -> None:
    """Transport failures exit with the provider code."""
    transport = FakeTransport(error=TransportError("HTTP 500 Internal Server Error"))
    report = _orchestrator(host, transport, FakeInstaller(host), work_root).execute(EXPLICIT)
    assert report.outcome.kind is OutcomeKind.DOWNLOAD_FAILED
    assert report.exit_code is ExitCode.PROVIDER
    assert report.message == "Download failed: HTTP 500 Internal Server Error"
    assert list(work_root.iterdir()) == []


def test_unreadable_record_is_a_warning(agent_zip: bytes, work_root: Path) -> None:
    """A failing record query before install is treated as no prior install."""

    class FirstReadFails(FakeHost):
        def __init__(self) -> None:
            super().__init__()
            self.reads = 0

        def read_install_record(self) -> PriorInstallationRecord | None:
            self.reads += 1
            if self.reads == 1:
                raise HostQueryError("registry busy")
            return super().read_install_record()

    host = FirstReadFails()
    report = _orchestrator(
        host, FakeTransport(agent_zip), FakeInstaller(host), work_root
    ).execute(EXPLICIT)
    assert report.outcome.kind is OutcomeKind.SUCCESS
    assert report.prior_install is None
    assert "install record unreadable: registry busy" in report.warnings


def test_steps_recorded_on_operation(host: FakeHost, agent_zip: bytes, work_root: Path) -> None:
    """The orchestrator reports its own steps around the pipeline's."""
    op = OperationScope("install")
    _orchestrator(host, FakeTransport(agent_zip), FakeInstaller(host), work_root).execute(
        EXPLICIT, op=op
    )
    names = [step["name"] for step in op.steps]
    assert names[:3] == ["probe", "install-record.read", "credentials.resolve"]
    assert names[-1] == "pipeline.verify"


@pytest.mark.parametrize(
    ("previous", "current", "expected"),
    [
        (None, "5.1.0", "fresh"),
        ("5.0.0", "5.1.0", "upgrade"),
        ("5.1.0", "5.0.0", "downgrade"),
        ("5.1.0", "5.1.0", "reinstall"),
        ("weird", "weird", "reinstall"),
        ("5.0.0", None, None),
    ],
)
def test_classify_change(previous: str | None, current: str | None, expected: str | None) -> None:
    """Version moves are classified with PEP 440 ordering."""
    assert classify_change(previous, current) == expected


def test_status_messages_for_failures() -> None:
    """Each failure kind produces one status line."""
    assert status_message(
        InstallOutcome(OutcomeKind.EXTRACT_FAILED, detail="bad zip")
    ) == "Extract failed: bad zip"
    assert status_message(
        InstallOutcome(OutcomeKind.INSTALL_FAILED, detail="no record")
    ) == "Install failed: no record"
    prior = PriorInstallationRecord(version="5.1.0")
    assert status_message(
        InstallOutcome(OutcomeKind.SUCCESS, version="5.0.0"),
        prior_install=prior,
        change="downgrade",
    ) == "Agent downgraded from 5.1.0 to 5.0.0."


def _http_orchestrator(host: FakeHost, work_root: Path, agent_zip: bytes) -> Orchestrator:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=agent_zip)

    transport = HttpxTransport(timeout=5.0, client_transport=httpx.MockTransport(handler))
    return Orchestrator(
        host=host,
        probe=EnvironmentProbe(host),
        resolver=CredentialResolver(),
        pipeline=InstallPipeline(host, transport, FakeInstaller(host)),
        work_root=work_root,
    )


@pytest.mark.parametrize(
    "explicit",
    [
        PartialCredentials(
            api_url="https://host:abc", api_key="key", service_key="svc", user_name="agent"
        ),
        PartialCredentials(api_key="kéy", service_key="svc", user_name="agent"),
    ],
    ids=["malformed-url", "non-ascii-api-key"],
)
def test_unsendable_request_is_a_download_failure(
    host: FakeHost, agent_zip: bytes, work_root: Path, explicit: PartialCredentials
) -> None:
    """Requests httpx refuses to build end the run with a report, not an exception."""
    report = _http_orchestrator(host, work_root, agent_zip).execute(explicit)

    assert report.outcome.kind is OutcomeKind.DOWNLOAD_FAILED
    assert report.exit_code is ExitCode.PROVIDER
    assert report.message.startswith("Download failed: ")
    assert list(work_root.iterdir()) == []


def test_http_transport_end_to_end(host: FakeHost, agent_zip: bytes, work_root: Path) -> None:
    """The real transport over a mock server installs the agent."""
    report = _http_orchestrator(host, work_root, agent_zip).execute(EXPLICIT)
    assert report.outcome.kind is OutcomeKind.SUCCESS
