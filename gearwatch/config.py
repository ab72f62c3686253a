import sys
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import yaml  # PyYAML
except ImportError:
    yaml = None

from .models import (
    AlertMQTTConfig,
    AlertWebhookConfig,
    AlertsConfig,
    Priority,
    ProviderConfig,
    RulesConfig,
    SchedulerConfig,
)


def load_config(path: Path) -> Dict[str, Any]:
    if yaml is None:
        print("PyYAML is required. Install with: pip install pyyaml", file=sys.stderr)
        sys.exit(1)
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        print(f"Config file not found: {path}", file=sys.stderr)
        sys.exit(1)
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level")
    return data


def load_fixtures(path: Path) -> Dict[str, Any]:
    """Load snapshot rows (equipment, checkouts, users) from a YAML file."""
    if yaml is None:
        print("PyYAML is required. Install with: pip install pyyaml", file=sys.stderr)
        sys.exit(1)
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Fixtures file {path} must contain a mapping at the top level")
    return data


def _section(cfg: Dict[str, Any], name: str) -> Dict[str, Any]:
    raw = cfg.get(name, {}) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Section '{name}' must be a mapping (got {type(raw).__name__})")
    return raw


def _number(section: str, key: str, raw: Any, cast=float):
    try:
        return cast(raw)
    except (TypeError, ValueError):
        raise ValueError(f"{section}.{key}: invalid value {raw!r}")


def build_provider_config(cfg: Dict[str, Any]) -> Optional[ProviderConfig]:
    provider_cfg = _section(cfg, "provider")
    url = provider_cfg.get("url")
    if not url:
        return None

    timeout = _number("provider", "timeout", provider_cfg.get("timeout", 10.0))
    if timeout <= 0:
        raise ValueError(f"provider.timeout must be positive (got {timeout})")
    max_retries = _number("provider", "max_retries", provider_cfg.get("max_retries", 2), int)
    if max_retries < 0:
        raise ValueError(f"provider.max_retries must be non-negative (got {max_retries})")

    tables = provider_cfg.get("tables", {}) or {}
    api_key_env_raw = provider_cfg.get("api_key_env")
    return ProviderConfig(
        url=str(url).rstrip("/"),
        api_key_env=str(api_key_env_raw) if api_key_env_raw else None,
        timeout=timeout,
        max_retries=max_retries,
        equipment_table=str(tables.get("equipment", "equipment")),
        checkouts_table=str(tables.get("checkouts", "checkouts")),
        users_table=str(tables.get("users", "users")),
    )


def build_scheduler_config(cfg: Dict[str, Any]) -> SchedulerConfig:
    sched_cfg = _section(cfg, "scheduler")
    interval = _number("scheduler", "interval_seconds", sched_cfg.get("interval_seconds", 30.0))
    if interval <= 0:
        raise ValueError(f"scheduler.interval_seconds must be positive (got {interval})")
    delay = _number(
        "scheduler",
        "invalidation_delay_seconds",
        sched_cfg.get("invalidation_delay_seconds", 0.5),
    )
    if delay < 0:
        raise ValueError(f"scheduler.invalidation_delay_seconds must be non-negative (got {delay})")
    return SchedulerConfig(interval_seconds=interval, invalidation_delay_seconds=delay)


def build_rules_config(cfg: Dict[str, Any]) -> RulesConfig:
    rules_cfg = _section(cfg, "rules")
    defaults = RulesConfig()
    values = {}
    for key in (
        "due_soon_days",
        "due_soon_high_days",
        "overdue_medium_days",
        "overdue_high_days",
        "maintenance_stale_days",
        "maintenance_high_days",
    ):
        value = _number("rules", key, rules_cfg.get(key, getattr(defaults, key)), int)
        if value < 0:
            raise ValueError(f"rules.{key} must be non-negative (got {value})")
        values[key] = value

    if values["overdue_high_days"] < values["overdue_medium_days"]:
        raise ValueError("rules.overdue_high_days must not be below rules.overdue_medium_days")
    if values["maintenance_high_days"] < values["maintenance_stale_days"]:
        raise ValueError("rules.maintenance_high_days must not be below rules.maintenance_stale_days")
    return RulesConfig(**values)


def build_alerts_config(cfg: Dict[str, Any]) -> Optional[AlertsConfig]:
    alerts_cfg = _section(cfg, "alerts")
    if not alerts_cfg or not alerts_cfg.get("enabled", True):
        return None

    min_priority = Priority.from_string(alerts_cfg.get("min_priority", "HIGH"))

    webhook_cfg = None
    webhook_raw = alerts_cfg.get("webhook")
    if webhook_raw and webhook_raw.get("enabled", True) and webhook_raw.get("url"):
        wh_headers = webhook_raw.get("headers", {}) or {}
        webhook_cfg = AlertWebhookConfig(
            url=str(webhook_raw["url"]),
            method=str(webhook_raw.get("method", "POST")).upper(),
            headers={str(k): str(v) for k, v in wh_headers.items()},
        )

    mqtt_cfg = None
    mqtt_raw = alerts_cfg.get("mqtt")
    if mqtt_raw and mqtt_raw.get("enabled", True):
        mqtt_host = mqtt_raw.get("host")
        mqtt_topic = mqtt_raw.get("topic")
        if mqtt_host and mqtt_topic:
            mqtt_cfg = AlertMQTTConfig(
                host=str(mqtt_host),
                topic=str(mqtt_topic),
                port=int(mqtt_raw.get("port", 1883)),
                username=mqtt_raw.get("username"),
                password=mqtt_raw.get("password"),
            )

    if webhook_cfg is None and mqtt_cfg is None:
        return None
    return AlertsConfig(min_priority=min_priority, webhook=webhook_cfg, mqtt=mqtt_cfg)
