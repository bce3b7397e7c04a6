"""Tests for the environment eligibility probe."""
from __future__ import annotations

from fakes import FakeHost

from agentctl.models import ApplicationPoolInfo
from agentctl.probe import EnvironmentProbe
from agentctl.providers.host import CapabilityUnavailable, HostQueryError, ServiceState


def _probe(host: FakeHost) -> EnvironmentProbe:
    return EnvironmentProbe(host, legacy_runtime_versions=("v2.0", "v4.0"))


def test_probe_eligible_host(host: FakeHost) -> None:
    """All checks pass on a running IIS host with a legacy pool."""
    report = _probe(host).evaluate()
    assert report.eligible
    assert [check.id for check in report.checks] == [
        "web-server-feature",
        "web-server-service",
        "legacy-app-pool",
    ]
    assert report.failed is None
    assert _probe(FakeHost()).is_eligible()


def test_probe_feature_missing_is_ineligible_even_with_pools() -> None:
    """The feature check gates the rest and short-circuits."""
    host = FakeHost(feature=False)
    report = _probe(host).evaluate()
    assert not report.eligible
    assert report.failed is not None and report.failed.id == "web-server-feature"
    assert "pools" not in host.calls


def test_probe_feature_query_error_is_ineligible() -> None:
    """Query failures never raise out of the probe."""
    host = FakeHost(feature=HostQueryError("boom"))
    report = _probe(host).evaluate()
    assert not report.eligible
    assert report.warnings == ("boom",)


def test_probe_service_not_installed() -> None:
    """A missing web-server service makes the host ineligible."""
    host = FakeHost(service_states=(ServiceState.NOT_INSTALLED,))
    report = _probe(host).evaluate()
    assert report.failed is not None and report.failed.id == "web-server-service"
    assert not any(call.startswith("start:") for call in host.calls)


def test_probe_starts_stopped_service_once() -> None:
    """A stopped service is started once and re-checked."""
    host = FakeHost(service_states=(ServiceState.STOPPED, ServiceState.RUNNING))
    report = _probe(host).evaluate()
    assert report.eligible
    assert host.calls.count("start:W3SVC") == 1
    assert any("attempted start" in warning for warning in report.warnings)


def test_probe_service_still_stopped_after_start() -> None:
    """No second start attempt is made."""
    host = FakeHost(service_states=(ServiceState.STOPPED, ServiceState.STOPPED))
    report = _probe(host).evaluate()
    assert not report.eligible
    assert host.calls.count("start:W3SVC") == 1
    assert report.failed is not None
    assert "after start attempt" in report.failed.message


def test_probe_start_failure_is_ineligible() -> None:
    """Failing to start the service is a negative result, not an error."""
    host = FakeHost(
        service_states=(ServiceState.STOPPED,),
        start_error=HostQueryError("access denied"),
    )
    report = _probe(host).evaluate()
    assert not report.eligible
    assert "access denied" in report.warnings


def test_probe_requires_legacy_pool() -> None:
    """Hosts with only no-managed-code pools are ineligible."""
    host = FakeHost(pools=[ApplicationPoolInfo(name="core", managed_runtime_version="")])
    report = _probe(host).evaluate()
    assert not report.eligible
    assert report.failed is not None and report.failed.id == "legacy-app-pool"


def test_probe_matches_runtime_case_insensitively() -> None:
    """Runtime versions are compared without regard to case."""
    host = FakeHost(pools=[ApplicationPoolInfo(name="old", managed_runtime_version="V2.0")])
    assert _probe(host).is_eligible()


def test_probe_capability_unavailable_is_ineligible_with_warning() -> None:
    """A missing administration module is reported as a warning."""
    host = FakeHost(pools_error=CapabilityUnavailable("WebAdministration missing"))
    report = _probe(host).evaluate()
    assert not report.eligible
    assert report.warnings == ("capability unavailable: WebAdministration missing",)
