"""Configuration loading for gatewayapi-dns.

Brief:
  This module reads the optional YAML config file, applies environment
  overrides and validates the result into an AppConfig. The AppConfig is built
  once at startup and passed to every component; nothing else reads
  os.environ.

Inputs:
  - YAML config path and an environment mapping

Outputs:
  - Validated AppConfig instances
"""

from __future__ import annotations

import ipaddress
import os
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..kinds import DEFAULT_KINDS, ResourceKind, get_resource_kind
from .logging_config import _LEVELS


class ListenConfig(BaseModel):
    """Brief: Where the DNS listeners bind.

    Inputs:
      - host: Listen address (default all interfaces).
      - port: UDP (and TCP) port.
      - tcp: Also serve DNS over TCP.
    """

    host: str = "0.0.0.0"
    port: int = Field(default=53, ge=0, le=65535)
    tcp: bool = True


class AppConfig(BaseModel):
    """Brief: Typed application configuration.

    Inputs:
      - listen: ListenConfig for the DNS listeners.
      - local_address: IPv4 address every published hostname resolves to.
      - probe_interval_seconds: Delay between existence probes for kinds that
        are not installed yet.
      - watch_timeout_seconds: Server-side timeout of each watch request.
      - watch_retry_delay_seconds: Delay before reopening a failed watch
        stream (0 reopens immediately).
      - kinds: Resource kind aliases to watch.
      - kubeconfig / in_cluster: Kubernetes credentials selection.
      - logging: Mapping passed to init_logging().

    Outputs:
      - AppConfig instance with normalized field types.
    """

    listen: ListenConfig = Field(default_factory=ListenConfig)
    local_address: str = "127.0.0.1"
    probe_interval_seconds: float = Field(default=10.0, ge=0)
    watch_timeout_seconds: int = Field(default=300, ge=1)
    watch_retry_delay_seconds: float = Field(default=0.0, ge=0)
    kinds: List[str] = Field(default_factory=lambda: list(DEFAULT_KINDS))
    kubeconfig: Optional[str] = None
    in_cluster: Optional[bool] = None
    logging: Dict[str, Any] = Field(default_factory=lambda: {"level": "info"})

    @field_validator("local_address", mode="before")
    @classmethod
    def _check_local_address(cls, v: Any) -> str:
        return str(ipaddress.IPv4Address(str(v).strip()))

    @field_validator("kinds", mode="before")
    @classmethod
    def _check_kinds(cls, v: Any) -> List[str]:
        if v is None:
            return list(DEFAULT_KINDS)
        if isinstance(v, str):
            v = [v]
        names = [str(x).strip() for x in v if str(x).strip()]
        for name in names:
            try:
                get_resource_kind(name)
            except KeyError as exc:
                raise ValueError(exc.args[0]) from exc
        return names

    @field_validator("logging", mode="before")
    @classmethod
    def _check_logging(cls, v: Any) -> Dict[str, Any]:
        if v is None:
            return {"level": "info"}
        if not isinstance(v, Mapping):
            raise ValueError("logging must be a mapping")
        level = str(v.get("level", "info")).lower()
        if level not in _LEVELS:
            raise ValueError(
                f"unknown logging level {level!r} (expected one of {', '.join(_LEVELS)})"
            )
        return dict(v)

    def resource_kinds(self) -> List[ResourceKind]:
        """Return configured kinds in order, collapsing aliases of one kind."""
        out: List[ResourceKind] = []
        for name in self.kinds:
            kind = get_resource_kind(name)
            if kind not in out:
                out.append(kind)
        return out


def apply_env_overrides(
    cfg: Dict[str, Any], environ: Optional[Mapping[str, str]] = None
) -> Dict[str, Any]:
    """Brief: Overlay supported environment variables onto a raw config mapping.

    Inputs:
      - cfg: Raw config mapping (mutated in-place).
      - environ: Environment mapping (defaults to os.environ).

    Outputs:
      - dict: cfg with overrides applied.

    Supported variables:
      - POD_IP: listen.host and local_address (the pod serves DNS on, and
        publishes, its own address).
      - DNS_PORT: listen.port.
      - LOG_LEVEL: logging.level.

    Example:
      >>> apply_env_overrides({}, {"DNS_PORT": "5353"})["listen"]["port"]
      '5353'
    """

    env = os.environ if environ is None else environ

    listen = cfg.get("listen")
    if listen is None:
        listen = {}
    elif not isinstance(listen, dict):
        raise ValueError("config.listen must be a mapping when present")

    pod_ip = str(env.get("POD_IP") or "").strip()
    if pod_ip:
        listen["host"] = pod_ip
        cfg["local_address"] = pod_ip

    dns_port = str(env.get("DNS_PORT") or "").strip()
    if dns_port:
        listen["port"] = dns_port

    if listen:
        cfg["listen"] = listen

    log_level = str(env.get("LOG_LEVEL") or "").strip()
    if log_level:
        log_cfg = cfg.get("logging")
        log_cfg = dict(log_cfg) if isinstance(log_cfg, dict) else {}
        log_cfg["level"] = log_level
        cfg["logging"] = log_cfg

    return cfg


def load_config(
    config_path: Optional[str] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    required: bool = False,
) -> AppConfig:
    """Brief: Read, env-merge, and validate the application configuration.

    Inputs:
      - config_path: YAML file path; None or a missing file yields defaults
        unless required is true.
      - environ: Optional environment mapping (defaults to os.environ).
      - required: Raise when config_path does not exist.

    Outputs:
      - AppConfig.

    Raises ValueError for unreadable/invalid YAML or failed validation.
    """

    raw: Dict[str, Any] = {}
    if config_path and os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            try:
                loaded = yaml.safe_load(f)
            except yaml.YAMLError as exc:
                raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config root in {config_path} must be a mapping")
        raw = loaded
    elif config_path and required:
        raise ValueError(f"Config file not found: {config_path}")

    apply_env_overrides(raw, environ)

    try:
        return AppConfig(**raw)
    except ValidationError as exc:
        where = config_path or "<defaults>"
        raise ValueError(f"Invalid configuration ({where}): {exc}") from exc
