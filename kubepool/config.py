"""TOML-based configuration.

Loads ~/.kubepool/defaults.toml (global) and kubepool.toml (project),
merges them, and resolves the result into a Settings instance.

Example kubepool.toml:

    provider = "contabo"

    [contabo]
    product_id = "V78"
    provisioning = "manual"

    [ssh]
    key_path = "~/.ssh/kubepool"

    [kubernetes]
    version = "1.32"
    cni = "calico"
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Literal

from kubepool.core.exceptions import ConfigurationError
from kubepool.observability.logging import LogConfig
from kubepool.providers.contabo.config import Contabo

type RawConfig = dict[str, Any]
type CNI = Literal["calico", "flannel"]

GLOBAL_CONFIG_PATH = Path.home() / ".kubepool" / "defaults.toml"
PROJECT_CONFIG_NAME = "kubepool.toml"


@dataclass(frozen=True, slots=True)
class SSHSettings:
    """SSH identity used for every node of every cluster."""

    key_path: str = "~/.ssh/id_ed25519"
    public_key_path: str | None = None
    user: str = "root"
    connect_timeout: float = 30.0
    command_timeout: float = 600.0

    def public_key(self) -> str:
        path = Path(self.public_key_path or f"{self.key_path}.pub").expanduser()
        try:
            return path.read_text().strip()
        except OSError as e:
            raise ConfigurationError(f"Cannot read SSH public key {path}: {e}") from e


@dataclass(frozen=True, slots=True)
class CheckSettings:
    """Limits for post-provisioning verification checks.

    Each check (ping, ssh, peer reachability) gets ``retries`` extra
    attempts of at most ``timeout`` seconds, ``interval`` seconds apart.
    The whole provisioning is retried ``max_provision_attempts`` times.
    """

    timeout: float = 30.0
    retries: int = 10
    interval: float = 10.0
    max_provision_attempts: int = 3


@dataclass(frozen=True, slots=True)
class Settings:
    provider: str = "contabo"
    contabo: Contabo = field(default_factory=Contabo)
    ssh: SSHSettings = field(default_factory=SSHSettings)
    checks: CheckSettings = field(default_factory=CheckSettings)
    kubernetes_version: str = "1.32"
    cni: CNI = "calico"
    logging: LogConfig = field(default_factory=LogConfig)


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)
    return _deep_merge(global_cfg, project_cfg)


def _build[T](cls: type[T], section: str, raw: RawConfig) -> T:
    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown key(s) in [{section}]: {', '.join(unknown)}. "
            f"Valid: {', '.join(sorted(known))}"
        )
    return cls(**raw)


def build_settings(raw: RawConfig) -> Settings:
    raw = dict(raw)
    provider = raw.pop("provider", "contabo")
    if provider != "contabo":
        raise ConfigurationError(f"Unknown provider '{provider}'. Valid: contabo")

    kubernetes = dict(raw.pop("kubernetes", {}))
    cni = kubernetes.pop("cni", "calico")
    if cni not in ("calico", "flannel"):
        raise ConfigurationError(f"Unknown CNI '{cni}'. Valid: calico, flannel")
    version = str(kubernetes.pop("version", "1.32"))
    if kubernetes:
        raise ConfigurationError(f"Unknown key(s) in [kubernetes]: {', '.join(sorted(kubernetes))}")

    settings = Settings(
        provider=provider,
        contabo=_build(Contabo, "contabo", raw.pop("contabo", {})),
        ssh=_build(SSHSettings, "ssh", raw.pop("ssh", {})),
        checks=_build(CheckSettings, "checks", raw.pop("checks", {})),
        kubernetes_version=version,
        cni=cni,
        logging=_build(LogConfig, "logging", raw.pop("logging", {})),
    )
    if raw:
        raise ConfigurationError(f"Unknown section(s): {', '.join(sorted(raw))}")
    return settings


def load_settings(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> Settings:
    return build_settings(load_config(project_dir=project_dir, global_path=global_path))
