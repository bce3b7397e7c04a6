"""Typer-powered command line interface for ``agentctl``.

``agentctl install`` is the unattended entry point: it checks that the host
is an IIS server running .NET Framework application pools, resolves the
distribution service credentials, downloads the agent package and runs the
vendor installer silently. ``check`` and ``status`` expose the probe and the
installation record on their own.
"""
from __future__ import annotations

import json
import tempfile
import textwrap
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
import yaml
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .credentials import CredentialResolver
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .models import OutcomeKind, PartialCredentials, PriorInstallationRecord
from .orchestrator import Orchestrator, RunReport
from .pipeline import InstallPipeline
from .probe import EligibilityReport, EnvironmentProbe
from .providers import (
    AgentInstaller,
    HostQueryError,
    HttpxTransport,
    PowerShellHostProvider,
)

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to agentctl's YAML config file.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit machine-readable JSON instead of text.",
)
URL_OPTION = typer.Option(
    None,
    "--url",
    envvar="AGENTCTL_API_URL",
    help="Base URL of the distribution service (defaults to the hosted service).",
)
API_KEY_OPTION = typer.Option(
    None,
    "--api-key",
    envvar="AGENTCTL_API_KEY",
    help="Organization API key.",
)
SERVICE_KEY_OPTION = typer.Option(
    None,
    "--service-key",
    envvar="AGENTCTL_SERVICE_KEY",
    help="Service key of the agent user.",
)
USER_NAME_OPTION = typer.Option(
    None,
    "--user-name",
    envvar="AGENTCTL_USER_NAME",
    help="Agent user name.",
)

_CHECK_STATUS_STYLE = {
    True: "[green]PASS[/green]",
    False: "[red]FAIL[/red]",
}
_OUTCOME_STYLE = {
    OutcomeKind.SUCCESS: "green",
    OutcomeKind.INELIGIBLE: "yellow",
    OutcomeKind.MISSING_CREDENTIALS: "red",
    OutcomeKind.DOWNLOAD_FAILED: "red",
    OutcomeKind.EXTRACT_FAILED: "red",
    OutcomeKind.INSTALL_FAILED: "red",
}

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Unattended installer and updater for the .NET Framework agent on IIS.

        Run ``agentctl install`` with the service credentials, or without them
        to reuse the configuration of an agent that is already installed.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect agentctl configuration.")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    host: PowerShellHostProvider
    transport: HttpxTransport
    installer: AgentInstaller
    probe: EnvironmentProbe
    resolver: CredentialResolver
    pipeline: InstallPipeline

    @property
    def work_root(self) -> Path:
        """Return the parent directory for temporary work directories."""
        return self.config.work_root or Path(tempfile.gettempdir())


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    logger = StructuredLogger(config.logs_dir)
    ctx.call_on_close(logger.close)
    host = PowerShellHostProvider(
        registry_key=config.host.registry_key,
        powershell_bin=config.host.powershell_bin,
    )
    transport = HttpxTransport(
        timeout=config.service.timeout,
        verify=config.service.verify_tls,
    )
    installer = AgentInstaller()
    probe = EnvironmentProbe(
        host,
        legacy_runtime_versions=config.host.legacy_runtime_versions,
        feature_name=config.host.feature_name,
        service_name=config.host.service_name,
    )
    resolver = CredentialResolver(
        structured_config=config.agent.structured_config,
        legacy_config=config.agent.legacy_config,
    )
    pipeline = InstallPipeline(
        host,
        transport,
        installer,
        default_url=config.service.default_url,
        legacy_marker=config.service.legacy_marker,
        download_path=config.service.download_path,
        installer_executable=config.installer.executable,
        silent_args=config.installer.silent_args,
        config_filename=config.installer.config_filename,
    )
    runtime = RuntimeContext(
        config=config,
        logger=logger,
        host=host,
        transport=transport,
        installer=installer,
        probe=probe,
        resolver=resolver,
        pipeline=pipeline,
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the agentctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"agentctl {__version__}")
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _record_to_dict(record: PriorInstallationRecord | None) -> dict[str, object] | None:
    if record is None:
        return None
    return {
        "version": record.version,
        "install_directory": str(record.install_directory) if record.install_directory else None,
        "data_directory": str(record.data_directory) if record.data_directory else None,
    }


def _eligibility_to_dict(report: EligibilityReport | None) -> dict[str, object] | None:
    if report is None:
        return None
    return {
        "eligible": report.eligible,
        "checks": [
            {
                "id": check.id,
                "passed": check.passed,
                "message": check.message,
                "warnings": list(check.warnings),
            }
            for check in report.checks
        ],
    }


def _serialize_run_report(report: RunReport) -> dict[str, object]:
    """Convert a run report into a JSON-serialisable mapping."""
    outcome = report.outcome
    return {
        "outcome": outcome.kind.value,
        "message": report.message,
        "exit_code": int(report.exit_code),
        "version": outcome.version,
        "detail": outcome.detail,
        "missing_fields": list(outcome.missing_fields),
        "change": report.change,
        "previous_install": _record_to_dict(report.prior_install),
        "credential_sources": dict(report.provenance),
        "eligibility": _eligibility_to_dict(report.eligibility),
        "warnings": list(report.warnings),
    }


def _render_eligibility(report: EligibilityReport) -> None:
    """Render probe checks in a human-friendly format."""
    for check in report.checks:
        console.print(f"{_CHECK_STATUS_STYLE[check.passed]} {check.id}: {check.message}")
        if check.warnings:
            console.print(f"  notes: {'; '.join(check.warnings)}")


@app.command()
def install(
    ctx: typer.Context,
    url: str | None = URL_OPTION,
    api_key: str | None = API_KEY_OPTION,
    service_key: str | None = SERVICE_KEY_OPTION,
    user_name: str | None = USER_NAME_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Install or upgrade the agent on this host."""
    runtime = _get_runtime(ctx)
    explicit = PartialCredentials(
        api_url=url,
        api_key=api_key,
        service_key=service_key,
        user_name=user_name,
    )
    args = {
        "url": url,
        "api_key": api_key,
        "service_key": service_key,
        "user_name": user_name,
        "json": json_output,
    }
    with runtime.logger.operation(
        "install",
        args=args,
        target={"kind": "agent", "work_root": str(runtime.work_root)},
    ) as op:
        orchestrator = Orchestrator(
            host=runtime.host,
            probe=runtime.probe,
            resolver=runtime.resolver,
            pipeline=runtime.pipeline,
            work_root=runtime.work_root,
        )
        report = orchestrator.execute(explicit, op=op)

        if json_output:
            typer.echo(json.dumps(_serialize_run_report(report), indent=2))
        else:
            if report.eligibility is not None and report.outcome.kind is OutcomeKind.INELIGIBLE:
                _render_eligibility(report.eligibility)
            style = _OUTCOME_STYLE[report.outcome.kind]
            console.print(f"[{style}]{report.message}[/{style}]")
            for warning in report.warnings:
                console.print(f"[yellow]warning:[/yellow] {warning}")

        context = {
            "outcome": report.outcome.kind.value,
            "version": report.outcome.version,
            "change": report.change,
        }
        if report.exit_code is not ExitCode.OK:
            op.error(
                report.message,
                rc=int(report.exit_code),
                warnings=list(report.warnings) or None,
                context=context,
            )
            raise typer.Exit(code=int(report.exit_code))
        if report.warnings:
            op.warning(
                report.message,
                warnings=list(report.warnings),
                changed=1 if report.outcome.succeeded else 0,
                context=context,
            )
            return
        op.success(report.message, changed=1 if report.outcome.succeeded else 0, context=context)


@app.command()
def check(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Check whether this host is an eligible install target.

    Note: a stopped IIS service is started as part of the check.
    """
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "check",
        args={"json": json_output},
        target={"kind": "host"},
    ) as op:
        report = runtime.probe.evaluate()
        for item in report.checks:
            op.add_step(
                f"probe.{item.id}",
                status="success" if item.passed else "error",
                detail=item.message,
            )
        if json_output:
            typer.echo(json.dumps(_eligibility_to_dict(report), indent=2))
        else:
            _render_eligibility(report)
        if report.eligible:
            if not json_output:
                console.print("[green]Host is eligible for agent installation.[/green]")
            op.success("Host is eligible.", changed=0, warnings=list(report.warnings) or None)
            return
        failed = report.failed
        message = f"Host is not eligible: {failed.message if failed else 'no checks ran'}"
        if not json_output:
            console.print(f"[yellow]{message}[/yellow]")
        op.error(message, rc=int(ExitCode.ENVIRONMENT), warnings=list(report.warnings) or None)
        raise typer.Exit(code=int(ExitCode.ENVIRONMENT))


@app.command()
def status(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Show the installed agent version and directories."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "status",
        args={"json": json_output},
        target={"kind": "agent"},
    ) as op:
        try:
            record = runtime.host.read_install_record()
        except HostQueryError as exc:
            _command_error(
                op,
                f"Could not read the agent installation record: {exc}",
                rc=int(ExitCode.PROVIDER),
                errors=[str(exc)],
            )

        payload = _record_to_dict(record)
        if json_output:
            typer.echo(json.dumps({"installed": record is not None, "record": payload}, indent=2))
        elif record is None:
            console.print("No agent installation found.")
        else:
            table = Table(title="Installed agent")
            table.add_column("Field")
            table.add_column("Value")
            for key, value in (payload or {}).items():
                table.add_row(key, str(value) if value is not None else "-")
            console.print(table)
        op.success("Reported installation record.", changed=0, context={"record": payload})


@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Print the resolved agentctl configuration."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        data: Mapping[str, object] = runtime.config.to_dict()
        if json_output:
            typer.echo(json.dumps(data, indent=2))
        else:
            typer.echo(yaml.safe_dump(dict(data), sort_keys=False).rstrip())
        op.success("Rendered configuration.", changed=0)


def main() -> None:  # pragma: no cover - console script entry
    """Run the Typer application."""
    app()


__all__ = ["app", "main"]
