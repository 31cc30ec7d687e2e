# packet_sniffer/config_loader.py
# Loads settings from config.yaml and .env. Environment variables (Influx connection, host id)
# override the file so secrets never need to live in the YAML.
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigError

load_dotenv()  # loads .env


@dataclass
class InfluxSettings:
    url: str
    bucket: str
    org: Optional[str] = None
    token: Optional[str] = None
    measurement: str = "capture_batches"
    timeout_ms: int = 10000


@dataclass
class NetworkSettings:
    adapter_prefix: str
    virtual_adapter_prefix: str
    virtual_ip_prefix: str
    local_ip_prefix: Optional[str] = None


@dataclass
class LoggingSettings:
    level: str = "INFO"
    file: Optional[str] = None
    rotation: str = "10 MB"
    retention: str = "7 days"


@dataclass
class AgentConfig:
    influx: InfluxSettings
    network: NetworkSettings
    filters: List[str]
    max_queue_size: int
    host_id: Optional[str] = None
    backend: str = "scapy"
    capture_poll_interval_sec: float = 2.0
    address_poll_interval_sec: float = 2.0
    statistics_flush_interval_sec: float = 10.0
    statistics_sample_interval_sec: float = 1.0
    sink_retry_delay_sec: float = 10.0
    logging: LoggingSettings = field(default_factory=LoggingSettings)


def _section(cfg: dict, name: str) -> dict:
    value = cfg.get(name)
    if value is None:
        raise ConfigError("Missing configuration section", {"section": name})
    if not isinstance(value, dict):
        raise ConfigError("Configuration section must be a mapping", {"section": name})
    return value


def _required_str(section: dict, key: str, where: str) -> str:
    value = section.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError("Missing or empty configuration value", {"key": f"{where}.{key}"})
    return value


def _positive(section: dict, key: str, where: str, default, cast=float):
    value = section.get(key, default)
    if isinstance(value, bool):
        raise ConfigError("Configuration value must be a number", {"key": f"{where}.{key}", "value": value})
    try:
        value = cast(value)
    except (TypeError, ValueError):
        raise ConfigError("Configuration value must be a number", {"key": f"{where}.{key}", "value": value})
    if value <= 0:
        raise ConfigError("Configuration value must be positive", {"key": f"{where}.{key}", "value": value})
    return value


def parse_config(cfg: dict) -> AgentConfig:
    """Validate a raw config mapping (already merged with env overrides)."""
    if not isinstance(cfg, dict):
        raise ConfigError("Configuration root must be a mapping")

    storage = _section(cfg, "storage")
    influx_raw = storage.get("influx")
    if not isinstance(influx_raw, dict):
        raise ConfigError("Missing configuration section", {"section": "storage.influx"})
    influx = InfluxSettings(
        url=_required_str(influx_raw, "url", "storage.influx"),
        bucket=_required_str(influx_raw, "bucket", "storage.influx"),
        org=influx_raw.get("org"),
        token=influx_raw.get("token"),
        measurement=influx_raw.get("measurement") or "capture_batches",
        timeout_ms=_positive(influx_raw, "timeout_ms", "storage.influx", 10000, int),
    )

    net_raw = _section(cfg, "network")
    local_prefix = net_raw.get("local_ip_prefix")
    if local_prefix is not None and not isinstance(local_prefix, str):
        raise ConfigError("Configuration value must be a string", {"key": "network.local_ip_prefix"})
    network = NetworkSettings(
        adapter_prefix=_required_str(net_raw, "adapter_prefix", "network"),
        virtual_adapter_prefix=_required_str(net_raw, "virtual_adapter_prefix", "network"),
        virtual_ip_prefix=_required_str(net_raw, "virtual_ip_prefix", "network"),
        local_ip_prefix=local_prefix or None,
    )

    capture = _section(cfg, "capture")
    filters = capture.get("filters")
    if not isinstance(filters, list) or not filters:
        raise ConfigError("No protocols to capture", {"key": "capture.filters"})
    for f in filters:
        if not isinstance(f, str) or not f.strip():
            raise ConfigError("Capture filter must be a non-empty string", {"key": "capture.filters", "value": f})

    agent = _section(cfg, "agent")
    if "max_queue_size" not in agent:
        raise ConfigError("Missing configuration value", {"key": "agent.max_queue_size"})

    log_raw = cfg.get("logging") or {}
    if not isinstance(log_raw, dict):
        raise ConfigError("Configuration section must be a mapping", {"section": "logging"})
    logging_settings = LoggingSettings(
        level=str(log_raw.get("level", "INFO")).upper(),
        file=log_raw.get("file"),
        rotation=str(log_raw.get("rotation", "10 MB")),
        retention=str(log_raw.get("retention", "7 days")),
    )

    backend = agent.get("backend", "scapy")
    if not isinstance(backend, str) or not backend.strip():
        raise ConfigError("Missing or empty configuration value", {"key": "agent.backend"})

    return AgentConfig(
        influx=influx,
        network=network,
        filters=[f.strip() for f in filters],
        max_queue_size=_positive(agent, "max_queue_size", "agent", None, int),
        host_id=agent.get("host_id") or None,
        backend=backend.lower(),
        capture_poll_interval_sec=_positive(agent, "capture_poll_interval_sec", "agent", 2.0),
        address_poll_interval_sec=_positive(agent, "address_poll_interval_sec", "agent", 2.0),
        statistics_flush_interval_sec=_positive(agent, "statistics_flush_interval_sec", "agent", 10.0),
        statistics_sample_interval_sec=_positive(agent, "statistics_sample_interval_sec", "agent", 1.0),
        sink_retry_delay_sec=_positive(agent, "sink_retry_delay_sec", "agent", 10.0),
        logging=logging_settings,
    )


def _mapping(parent: dict, key: str, where: str) -> dict:
    """Section `key` of `parent`, created empty when absent. Anything but a mapping is rejected."""
    value = parent.get(key)
    if value is None:
        value = parent[key] = {}
    if not isinstance(value, dict):
        raise ConfigError("Configuration section must be a mapping", {"section": where})
    return value


def _apply_env_overrides(cfg: dict) -> dict:
    storage = _mapping(cfg, "storage", "storage")
    influx = _mapping(storage, "influx", "storage.influx")
    for key, env in (("url", "INFLUX_URL"), ("token", "INFLUX_TOKEN"),
                     ("org", "INFLUX_ORG"), ("bucket", "INFLUX_BUCKET")):
        influx[key] = os.getenv(env, influx.get(key))
    host_id = os.getenv("PACKET_SNIFFER_HOST_ID")
    if host_id:
        _mapping(cfg, "agent", "agent")["host_id"] = host_id
    return cfg


def load_config(path: str = "config/config.yaml") -> AgentConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigError("Config not found", {"path": path})
    try:
        with p.open() as f:
            cfg = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError("Config is not valid YAML", {"path": path, "error": e})
    if not isinstance(cfg, dict):
        raise ConfigError("Configuration root must be a mapping", {"path": path})
    # merge env-overrides
    return parse_config(_apply_env_overrides(cfg))
