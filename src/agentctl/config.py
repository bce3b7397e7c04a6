"""Configuration loader for agentctl.

Values are layered, lowest precedence first:

1. Built-in defaults (the dataclass defaults below).
2. ``/etc/agentctl/config.yml``, or the path given by ``--config-file`` or
   ``AGENTCTL_CONFIG_FILE``.
3. ``AGENTCTL_*`` environment variables; ``__`` separates nested keys::

       export AGENTCTL_SERVICE__TIMEOUT=120
       export AGENTCTL_HOST__POWERSHELL_BIN=pwsh

4. Programmatic overrides.

Environment values go through ``yaml.safe_load`` so ``false`` and ``90`` arrive
as a boolean and a number. Unknown keys are rejected so typos surface early.

Agent credentials are deliberately absent: they come from CLI flags (or their
``AGENTCTL_API_*`` variables) and from an existing agent installation.
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

import yaml

ENV_PREFIX = "AGENTCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
CREDENTIAL_ENV_VARS = frozenset(
    f"{ENV_PREFIX}{name}" for name in ("API_URL", "API_KEY", "SERVICE_KEY", "USER_NAME")
)
DEFAULT_CONFIG_FILE = "/etc/agentctl/config.yml"
DEFAULT_LOGS_DIR = "/var/log/agentctl"


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class ServiceConfig:
    """Remote distribution service settings."""

    default_url: str = "https://app.contrastsecurity.com"
    legacy_marker: str = "/Contrast"
    download_path: str = "Contrast/api/engine/dotnet/package"
    timeout: float = 60.0
    verify_tls: bool = True

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "default_url": self.default_url,
            "legacy_marker": self.legacy_marker,
            "download_path": self.download_path,
            "timeout": self.timeout,
            "verify_tls": self.verify_tls,
        }


@dataclass(frozen=True)
class HostConfig:
    """IIS host query settings."""

    powershell_bin: str = "powershell.exe"
    feature_name: str = "Web-Server"
    service_name: str = "W3SVC"
    legacy_runtime_versions: tuple[str, ...] = ("v2.0", "v4.0")
    registry_key: str = r"HKLM:\SOFTWARE\Contrast Security\dotnet"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "powershell_bin": self.powershell_bin,
            "feature_name": self.feature_name,
            "service_name": self.service_name,
            "legacy_runtime_versions": list(self.legacy_runtime_versions),
            "registry_key": self.registry_key,
        }


@dataclass(frozen=True)
class InstallerConfig:
    """Silent installer invocation settings."""

    executable: str = "ContrastSetup.exe"
    silent_args: tuple[str, ...] = ("-s", "-norestart")
    config_filename: str = "contrast_security.yaml"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "executable": self.executable,
            "silent_args": list(self.silent_args),
            "config_filename": self.config_filename,
        }


@dataclass(frozen=True)
class AgentFilesConfig:
    """File names of the agent configuration files read for credentials."""

    structured_config: str = "contrast_security.yaml"
    legacy_config: str = "DotnetAgentService.exe.config"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "structured_config": self.structured_config,
            "legacy_config": self.legacy_config,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for agentctl."""

    config_file: Path
    logs_dir: Path
    work_root: Path | None
    service: ServiceConfig
    host: HostConfig
    installer: InstallerConfig
    agent: AgentFilesConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "work_root": str(self.work_root) if self.work_root is not None else None,
            "service": self.service.to_dict(),
            "host": self.host.to_dict(),
            "installer": self.installer.to_dict(),
            "agent": self.agent.to_dict(),
        }


# ``work_root`` of ``None`` means the system temporary directory.
DEFAULTS: dict[str, object] = {
    "config_file": DEFAULT_CONFIG_FILE,
    "logs_dir": DEFAULT_LOGS_DIR,
    "work_root": None,
    "service": ServiceConfig().to_dict(),
    "host": HostConfig().to_dict(),
    "installer": InstallerConfig().to_dict(),
    "agent": AgentFilesConfig().to_dict(),
}
SECTIONS: dict[str, frozenset[str]] = {
    name: frozenset(value)
    for name, value in DEFAULTS.items()
    if isinstance(value, Mapping)
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    environ = os.environ if env is None else env
    if config_file:
        path = Path(config_file)
    else:
        path = Path(environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILE)

    merged: dict[str, object] = dict(DEFAULTS)
    for layer in (_read_config_file(path), _env_overrides(environ), dict(overrides or {})):
        merged = _merge(merged, layer)
    merged["config_file"] = str(path)

    _check_keys(merged)
    return AppConfig(
        config_file=_path(merged["config_file"], "config_file"),
        logs_dir=_path(merged["logs_dir"], "logs_dir"),
        work_root=_path(merged["work_root"], "work_root") if merged["work_root"] else None,
        service=_build_service(_section(merged, "service")),
        host=_build_host(_section(merged, "host")),
        installer=_build_installer(_section(merged, "installer")),
        agent=_build_agent(_section(merged, "agent")),
    )


def _read_config_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _mapping(data, str(path))


def _env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    tree: dict[str, object] = {}
    for key, raw in env.items():
        if not key.startswith(ENV_PREFIX) or key == CONFIG_ENV_VAR:
            continue
        if key in CREDENTIAL_ENV_VARS:
            continue
        parts = [part.lower() for part in key[len(ENV_PREFIX) :].split("__") if part]
        if not parts:
            continue
        node = tree
        for part in parts[:-1]:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                raise ConfigError(f"Environment variable {key} conflicts with a scalar value.")
            node = child
        try:
            node[parts[-1]] = yaml.safe_load(raw)
        except yaml.YAMLError:
            node[parts[-1]] = raw.strip()
    return tree


def _merge(base: Mapping[str, object], layer: Mapping[str, object]) -> dict[str, object]:
    """Return *base* updated with *layer*, merging nested mappings."""
    result = dict(base)
    for key, value in layer.items():
        current = result.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            result[key] = _merge(current, _mapping(value, key))
        else:
            result[key] = value
    return result


def _check_keys(raw: Mapping[str, object]) -> None:
    unknown = set(raw) - set(DEFAULTS)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}.")
    for name, allowed in SECTIONS.items():
        extra = set(_section(raw, name)) - allowed
        if extra:
            raise ConfigError(
                f"Unknown {name} configuration keys: {', '.join(sorted(extra))}."
            )


def _section(raw: Mapping[str, object], name: str) -> dict[str, object]:
    return _mapping(raw.get(name), name)


def _build_service(values: Mapping[str, object]) -> ServiceConfig:
    download_path = _text(values["download_path"], "service.download_path")
    if not download_path.strip("/ "):
        raise ConfigError("service.download_path must be a non-empty path.")
    return ServiceConfig(
        default_url=_text(values["default_url"], "service.default_url").strip(),
        legacy_marker=_text(values["legacy_marker"], "service.legacy_marker"),
        download_path=download_path,
        timeout=_positive_number(values["timeout"], "service.timeout"),
        verify_tls=_flag(values["verify_tls"], "service.verify_tls"),
    )


def _build_host(values: Mapping[str, object]) -> HostConfig:
    versions = _string_list(values["legacy_runtime_versions"], "host.legacy_runtime_versions")
    if not versions:
        raise ConfigError("host.legacy_runtime_versions must list at least one version.")
    return HostConfig(
        powershell_bin=_text(values["powershell_bin"], "host.powershell_bin"),
        feature_name=_text(values["feature_name"], "host.feature_name"),
        service_name=_text(values["service_name"], "host.service_name"),
        legacy_runtime_versions=versions,
        registry_key=_text(values["registry_key"], "host.registry_key"),
    )


def _build_installer(values: Mapping[str, object]) -> InstallerConfig:
    return InstallerConfig(
        executable=_text(values["executable"], "installer.executable"),
        silent_args=_string_list(values["silent_args"], "installer.silent_args"),
        config_filename=_text(values["config_filename"], "installer.config_filename"),
    )


def _build_agent(values: Mapping[str, object]) -> AgentFilesConfig:
    return AgentFilesConfig(
        structured_config=_text(values["structured_config"], "agent.structured_config"),
        legacy_config=_text(values["legacy_config"], "agent.legacy_config"),
    )


def _mapping(value: object, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    if not all(isinstance(key, str) for key in value):
        raise ConfigError(f"Mapping {label} must use string keys.")
    return dict(value)


def _path(value: object, label: str) -> Path:
    if isinstance(value, (str, Path)) and str(value).strip():
        return Path(value).expanduser()
    raise ConfigError(f"Expected {label} to be a filesystem path. Got {value!r}.")


def _text(value: object, label: str) -> str:
    # YAML turns bare numbers into ints; accept them for names like "W3SVC".
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ConfigError(f"Expected {label} to be a string. Got {value!r}.")
    return str(value)


def _flag(value: object, label: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes"}:
            return True
        if lowered in {"false", "no"}:
            return False
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _positive_number(value: object, label: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    if number <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {number}.")
    return number


def _string_list(value: object, label: str) -> tuple[str, ...]:
    if isinstance(value, str):
        items: list[object] = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = list(value)
    else:
        raise ConfigError(f"Expected {label} to be a list. Got {type(value).__name__}.")
    return tuple(text for text in (str(item).strip() for item in items) if text)


__all__ = [
    "AgentFilesConfig",
    "AppConfig",
    "ConfigError",
    "HostConfig",
    "InstallerConfig",
    "ServiceConfig",
    "load_config",
]
