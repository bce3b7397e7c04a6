"""Tests for shared data models."""
from __future__ import annotations

from pathlib import Path

import pytest

from agentctl.models import (
    Credentials,
    InstallOutcome,
    InstallRequest,
    OutcomeKind,
    PartialCredentials,
    PriorInstallationRecord,
)


def test_partial_credentials_treat_blank_as_unset() -> None:
    """Whitespace-only values count as missing."""
    partial = PartialCredentials(api_url=" ", api_key="  key ", service_key="", user_name=None)
    assert partial.api_url is None
    assert partial.api_key == "key"
    assert partial.missing_fields() == ("service_key", "user_name")
    assert not partial.is_complete


def test_merged_with_never_overwrites_populated_fields() -> None:
    """Fields already set win over the other source."""
    first = PartialCredentials(api_key="explicit")
    second = PartialCredentials(api_key="yaml", service_key="svc", user_name="agent")
    merged = first.merged_with(second)
    assert merged.api_key == "explicit"
    assert merged.service_key == "svc"
    assert merged.user_name == "agent"
    assert merged.api_url is None


def test_finalize_requires_complete_fields() -> None:
    """Finalising incomplete credentials fails."""
    with pytest.raises(ValueError, match="service_key"):
        PartialCredentials(api_key="k", user_name="u").finalize()


def test_finalize_allows_missing_url() -> None:
    """The service URL is optional; the normaliser supplies a default."""
    credentials = PartialCredentials(api_key="k", service_key="s", user_name="u").finalize()
    assert credentials.api_url is None
    assert credentials.api_key == "k"


def test_credentials_repr_masks_secrets() -> None:
    """Secrets never appear in the repr."""
    credentials = Credentials(
        api_url=None, api_key="topsecret", service_key="svc-secret", user_name="u"
    )
    text = repr(credentials)
    assert "topsecret" not in text
    assert "svc-secret" not in text
    assert "user_name='u'" in text


def test_credentials_reject_blank_required_fields() -> None:
    """Direct construction validates required fields."""
    with pytest.raises(ValueError, match="api_key"):
        Credentials(api_url=None, api_key=" ", service_key="s", user_name="u")


def test_install_request_requires_credentials(tmp_path: Path) -> None:
    """Partial credentials cannot be passed to the pipeline."""
    with pytest.raises(ValueError):
        InstallRequest(PartialCredentials(api_key="k"), tmp_path)  # type: ignore[arg-type]


def test_prior_record_has_version() -> None:
    """Blank versions do not count as installed."""
    assert PriorInstallationRecord(version="5.0.1").has_version
    assert not PriorInstallationRecord(version=" ").has_version
    assert not PriorInstallationRecord(version=None).has_version


def test_outcome_kind_failure_classification() -> None:
    """Only real failures are flagged as such."""
    assert not OutcomeKind.SUCCESS.is_failure
    assert not OutcomeKind.INELIGIBLE.is_failure
    assert OutcomeKind.DOWNLOAD_FAILED.is_failure
    assert OutcomeKind.MISSING_CREDENTIALS.is_failure


def test_outcome_with_warnings_appends() -> None:
    """Warnings accumulate without mutating the original."""
    outcome = InstallOutcome(OutcomeKind.SUCCESS, version="1.0", warnings=("a",))
    updated = outcome.with_warnings("b")
    assert updated.warnings == ("a", "b")
    assert outcome.warnings == ("a",)
    assert outcome.with_warnings() is outcome
