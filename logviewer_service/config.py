from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Mapping

import yaml

from logviewer_service.errors import ConfigError


DEFAULT_CONFIG_PATH = "/etc/logviewer-service/config.yaml"
DEFAULT_SOCKET_PATH = "/run/logviewer-service.sock"
CHUNK_CEILING = 10 * 1024 * 1024

DEFAULT_COMMANDS = {
    "dmesg": "dmesg -r",
    "last": "last -x",
    "journalctl_system": "journalctl -r",
    "journalctl_boot": "journalctl -b -r",
    "journalctl_app": "journalctl",
}


@dataclass(frozen=True)
class PolicyConfig:
    read_prefixes: tuple[str, ...] = ("/var/log/", "/tmp", "/home", "/root")
    export_prefixes: tuple[str, ...] = ("/var/log/", "/tmp", "/home", "/var/lib/systemd/coredump")
    readelf_options: tuple[str, ...] = ("-h", "-S", "-l", "-n", "-e", "-W", "--wide")
    # executables readelf may inspect, on top of read_prefixes
    readelf_prefixes: tuple[str, ...] = ("/usr/", "/bin/", "/sbin/", "/lib/", "/lib64/", "/opt/")


@dataclass(frozen=True)
class ServiceConfig:
    socket_path: str = DEFAULT_SOCKET_PATH
    log_level: str = "INFO"
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    commands: Mapping[str, str] = field(default_factory=lambda: MappingProxyType(dict(DEFAULT_COMMANDS)))
    default_log_dir: str = "/var/log"
    audit_dir: str = "/var/log/audit"
    brand_markers: tuple[str, ...] = ("deepin", "uos")
    chunk_ceiling: int = CHUNK_CEILING
    invoker_names: tuple[str, ...] = ("deepin-log-viewer",)
    invoker_search_paths: tuple[str, ...] = ("/usr/bin",)
    invoker_paths: tuple[str, ...] = ()
    scratch_root: str | None = None


def _as_str_tuple(value, key: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(item, str) and item for item in value):
        raise ConfigError(f"{key} must be a list of non-empty strings")
    return tuple(value)


def _section(raw: dict, key: str) -> dict:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{key} must be a mapping")
    return value


def parse_config(raw: dict) -> ServiceConfig:
    if not isinstance(raw, dict):
        raise ConfigError("config root must be a mapping")
    config = ServiceConfig()

    policy_raw = _section(raw, "policy")
    policy = config.policy
    for key in ("read_prefixes", "export_prefixes", "readelf_options", "readelf_prefixes"):
        if key in policy_raw:
            policy = replace(policy, **{key: _as_str_tuple(policy_raw[key], f"policy.{key}")})

    commands = dict(config.commands)
    commands_raw = _section(raw, "commands")
    for name, template in commands_raw.items():
        if not isinstance(template, str) or not template.strip():
            raise ConfigError(f"commands.{name} must be a non-empty command line")
        commands[str(name)] = template.strip()

    discovery = _section(raw, "discovery")
    streams = _section(raw, "streams")
    invokers = _section(raw, "invokers")

    chunk_ceiling = streams.get("chunk_ceiling", config.chunk_ceiling)
    if not isinstance(chunk_ceiling, int) or chunk_ceiling <= 0:
        raise ConfigError("streams.chunk_ceiling must be a positive integer")

    updates = {
        "policy": policy,
        "commands": MappingProxyType(commands),
        "chunk_ceiling": chunk_ceiling,
        "default_log_dir": str(discovery.get("default_log_dir", config.default_log_dir)),
        "audit_dir": str(discovery.get("audit_dir", config.audit_dir)),
        "socket_path": str(raw.get("socket_path", config.socket_path)),
        "log_level": str(raw.get("log_level", config.log_level)).upper(),
    }
    if "scratch_root" in raw:
        updates["scratch_root"] = str(raw["scratch_root"]) if raw["scratch_root"] else None
    if "brand_markers" in discovery:
        updates["brand_markers"] = _as_str_tuple(discovery["brand_markers"], "discovery.brand_markers")
    if "names" in invokers:
        updates["invoker_names"] = _as_str_tuple(invokers["names"], "invokers.names")
    if "search_paths" in invokers:
        updates["invoker_search_paths"] = _as_str_tuple(invokers["search_paths"], "invokers.search_paths")
    if "paths" in invokers:
        paths = _as_str_tuple(invokers["paths"], "invokers.paths")
        if not all(os.path.isabs(path) for path in paths):
            raise ConfigError("invokers.paths must be absolute")
        updates["invoker_paths"] = paths
    return replace(config, **updates)


def load_config(path: str | None = None) -> ServiceConfig:
    """
    Build the service configuration.

    An explicit path (argument or LOGVIEWER_SERVICE_CONFIG) must exist. The
    default path is optional and falls back to built-in defaults. Environment
    overrides are applied last.
    """
    explicit = path or os.getenv("LOGVIEWER_SERVICE_CONFIG")
    config_path = explicit or DEFAULT_CONFIG_PATH
    raw: dict = {}
    if explicit or os.path.exists(config_path):
        try:
            with open(config_path, "r", encoding="utf-8") as handle:
                raw = yaml.safe_load(handle) or {}
        except OSError as exc:
            raise ConfigError(f"unable to read config {config_path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"invalid YAML in {config_path}: {exc}") from exc
    config = parse_config(raw)

    socket_override = os.getenv("LOGVIEWER_SERVICE_SOCKET", "").strip()
    if socket_override:
        config = replace(config, socket_path=socket_override)
    level_override = os.getenv("LOGVIEWER_SERVICE_LOG_LEVEL", "").strip()
    if level_override:
        config = replace(config, log_level=level_override.upper())
    return config
