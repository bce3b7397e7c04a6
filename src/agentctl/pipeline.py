"""Download, extract, install, verify and clean up the agent package."""
from __future__ import annotations

import base64
import logging
import shutil
import tempfile
from collections.abc import Callable, Sequence
from pathlib import Path

import yaml

from .archive import ArchiveError, extract_archive
from .logging import OperationScope
from .models import Credentials, InstallOutcome, InstallRequest, OutcomeKind
from .providers.host import HostProvider, HostQueryError
from .providers.installer import AgentInstallerError, Installer
from .providers.transport import Transport, TransportError
from .urls import (
    DEFAULT_SERVICE_URL,
    ENGINE_DOWNLOAD_PATH,
    LEGACY_PATH_MARKER,
    build_download_url,
    normalize_url,
)

LOGGER = logging.getLogger(__name__)

WORKDIR_PREFIX = "agentctl-install-"
PACKAGE_FILENAME = "agent-package.zip"


def build_auth_headers(credentials: Credentials) -> dict[str, str]:
    """Return the headers the distribution service expects."""
    token = f"{credentials.user_name}:{credentials.service_key}".encode()
    return {
        "Authorization": base64.b64encode(token).decode("ascii"),
        "API-Key": credentials.api_key,
        "Accept": "application/json",
    }


def render_install_config(credentials: Credentials, base_url: str) -> str:
    """Return the YAML consumed by the silent installer."""
    payload = {
        "api": {
            "url": base_url,
            "api_key": credentials.api_key,
            "service_key": credentials.service_key,
            "user_name": credentials.user_name,
        }
    }
    return yaml.safe_dump(payload, sort_keys=False)


class InstallPipeline:
    """Run a single install or upgrade of the agent."""

    def __init__(
        self,
        host: HostProvider,
        transport: Transport,
        installer: Installer,
        *,
        default_url: str = DEFAULT_SERVICE_URL,
        legacy_marker: str = LEGACY_PATH_MARKER,
        download_path: str = ENGINE_DOWNLOAD_PATH,
        installer_executable: str = "ContrastSetup.exe",
        silent_args: Sequence[str] = ("-s", "-norestart"),
        config_filename: str = "contrast_security.yaml",
        extract: Callable[[Path, Path], object] = extract_archive,
    ) -> None:
        """Wire the pipeline to its collaborators."""
        self.host = host
        self.transport = transport
        self.installer = installer
        self.default_url = default_url
        self.legacy_marker = legacy_marker
        self.download_path = download_path
        self.installer_executable = installer_executable
        self.silent_args = tuple(silent_args)
        self.config_filename = config_filename
        self.extract = extract

    def installer_command(self, workdir: Path) -> list[str]:
        """Return the silent-mode installer command for *workdir*."""
        return [
            str(workdir / self.installer_executable),
            *self.silent_args,
            f"PathToYaml={workdir / self.config_filename}",
        ]

    def run(self, request: InstallRequest, *, op: OperationScope | None = None) -> InstallOutcome:
        """Execute the pipeline; the work directory is always removed."""
        request.work_directory.mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix=WORKDIR_PREFIX, dir=str(request.work_directory)))
        _step(op, "workdir.create", detail=str(workdir))
        warnings: list[str] = []
        try:
            failure = self._stage_and_install(request.credentials, workdir, warnings, op)
        finally:
            cleanup_warning = _remove_workdir(workdir)
            if cleanup_warning:
                warnings.append(cleanup_warning)
                _step(op, "workdir.cleanup", status="warning", detail=cleanup_warning)
            else:
                _step(op, "workdir.cleanup", detail=str(workdir))

        if failure is not None:
            return failure.with_warnings(*warnings)
        return self._verify(op).with_warnings(*warnings)

    # ------------------------------------------------------------------
    def _stage_and_install(
        self,
        credentials: Credentials,
        workdir: Path,
        warnings: list[str],
        op: OperationScope | None,
    ) -> InstallOutcome | None:
        base_url = normalize_url(
            credentials.api_url, default=self.default_url, marker=self.legacy_marker
        )
        url = build_download_url(base_url, self.download_path)
        try:
            payload = self.transport.fetch(url, build_auth_headers(credentials))
        except TransportError as exc:
            _step(op, "download", status="error", detail=str(exc))
            return InstallOutcome(OutcomeKind.DOWNLOAD_FAILED, detail=str(exc))
        _step(op, "download", detail={"url": url, "bytes": len(payload)})

        archive_path = workdir / PACKAGE_FILENAME
        try:
            archive_path.write_bytes(payload)
            self.extract(archive_path, workdir)
        except (ArchiveError, OSError) as exc:
            _step(op, "extract", status="error", detail=str(exc))
            return InstallOutcome(OutcomeKind.EXTRACT_FAILED, detail=str(exc))
        _step(op, "extract", detail=str(workdir))

        config_path = workdir / self.config_filename
        try:
            config_path.write_text(render_install_config(credentials, base_url), encoding="utf-8")
        except OSError as exc:
            _step(op, "installer.config", status="error", detail=str(exc))
            return InstallOutcome(
                OutcomeKind.INSTALL_FAILED, detail=f"Could not write installer config: {exc}"
            )
        _step(op, "installer.config", detail=str(config_path))
        command = self.installer_command(workdir)
        try:
            code = self.installer.run(command)
        except AgentInstallerError as exc:
            warnings.append(f"installer: {exc}")
            _step(op, "installer.run", status="error", detail=str(exc))
            return None
        if code != 0:
            warnings.append(f"installer exited with code {code}")
            _step(op, "installer.run", status="warning", detail={"exit_code": code})
        else:
            _step(op, "installer.run", detail={"exit_code": code})
        return None

    def _verify(self, op: OperationScope | None) -> InstallOutcome:
        try:
            record = self.host.read_install_record()
        except HostQueryError as exc:
            _step(op, "verify", status="error", detail=str(exc))
            return InstallOutcome(
                OutcomeKind.INSTALL_FAILED,
                detail=f"Could not read the installation record: {exc}",
            )
        if record is None or not record.has_version:
            _step(op, "verify", status="error", detail="no installation record")
            return InstallOutcome(
                OutcomeKind.INSTALL_FAILED,
                detail="No agent installation record found after running the installer.",
            )
        _step(op, "verify", detail={"version": record.version})
        return InstallOutcome(OutcomeKind.SUCCESS, version=record.version)


def _remove_workdir(workdir: Path) -> str | None:
    try:
        shutil.rmtree(workdir)
    except FileNotFoundError:
        return None
    except OSError as exc:
        LOGGER.warning("Failed to remove work directory %s: %s", workdir, exc)
        return f"cleanup: could not remove {workdir}: {exc}"
    return None


def _step(
    op: OperationScope | None,
    name: str,
    *,
    status: str = "success",
    detail: object = None,
) -> None:
    if op is not None:
        op.add_step(f"pipeline.{name}", status=status, detail=detail)


__all__ = [
    "PACKAGE_FILENAME",
    "WORKDIR_PREFIX",
    "InstallPipeline",
    "build_auth_headers",
    "render_install_config",
]
