"""
Engine configuration model.

Supports loading from a JSON config file. Secrets (the webhook token) are
never stored in the file: the file names the environment variable that
holds them. ``CIVIC_DB_URL`` overrides the database URL from any source.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from civic_requests.lifecycle.models import Priority
from civic_requests.notify.retry import RetryConfig

DEFAULT_DB_URL = "sqlite:///civic_requests.db"
DB_URL_ENV = "CIVIC_DB_URL"


@dataclass
class EngineConfig:
    """Settings for a lifecycle engine deployment.

    Attributes:
        db_url: SQLAlchemy database URL.
        sla_days: Auto-approval window per priority, in days.
        sla_day_type: "calendar" or "business" (weekends skipped).
        investigation_threshold: Escalation level at which oversight is alerted.
        oversight_recipients: User ids that receive investigation alerts.
        sweep_interval_seconds: Pause between background deadline sweeps.
        tracking_prefix: Prefix of generated tracking codes.
        webhook_url: Optional delivery endpoint for notifications.
        webhook_token: Bearer token for the webhook (loaded from env at runtime).
        retry: Backoff settings for notification delivery.
        alert_thresholds_hours: Hours-left limits for SLA alert severities.
    """

    db_url: str = DEFAULT_DB_URL
    sla_days: dict[Priority, int] = field(
        default_factory=lambda: {Priority.HIGH: 1, Priority.MEDIUM: 3, Priority.NORMAL: 7}
    )
    sla_day_type: str = "calendar"
    investigation_threshold: int = 2
    oversight_recipients: list[str] = field(default_factory=list)
    sweep_interval_seconds: float = 3600.0
    tracking_prefix: str = "APP"
    webhook_url: Optional[str] = None
    webhook_token: str = ""
    retry: RetryConfig = field(default_factory=RetryConfig)
    alert_thresholds_hours: dict[str, float] = field(
        default_factory=lambda: {"info": 48, "warning": 24, "urgent": 6}
    )

    def __post_init__(self) -> None:
        if self.investigation_threshold < 1:
            raise ValueError("investigation_threshold must be at least 1.")
        if self.sla_day_type not in ("calendar", "business"):
            raise ValueError(
                f"Unknown sla_day_type '{self.sla_day_type}'. Use 'calendar' or 'business'."
            )
        if self.sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be positive.")


def _parse_sla_days(raw: dict[str, Any]) -> dict[Priority, int]:
    days = EngineConfig().sla_days
    for name, value in raw.items():
        try:
            priority = next(p for p in Priority if p.value.lower() == name.lower())
        except StopIteration:
            raise ValueError(f"Unknown priority '{name}' in sla_days.") from None
        days[priority] = int(value)
    return days


def load_engine_config(config_path: Optional[str | Path] = None) -> EngineConfig:
    """Load an EngineConfig from a JSON file, or defaults when no path is given.

    The webhook token is read from the environment variable named by the
    ``webhook_token_env`` field. If that variable is unset the webhook is
    used without authentication.

    Raises:
        FileNotFoundError: If config_path does not exist.
        json.JSONDecodeError: If the JSON is malformed.
        ValueError: If a setting is out of range.
    """
    raw: dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Engine config not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)

    token_env = raw.get("webhook_token_env", "")
    webhook_token = os.environ.get(token_env, "") if token_env else ""

    return EngineConfig(
        db_url=os.environ.get(DB_URL_ENV) or raw.get("db_url", DEFAULT_DB_URL),
        sla_days=_parse_sla_days(raw.get("sla_days", {})),
        sla_day_type=raw.get("sla_day_type", "calendar"),
        investigation_threshold=raw.get("investigation_threshold", 2),
        oversight_recipients=list(raw.get("oversight_recipients", [])),
        sweep_interval_seconds=raw.get("sweep_interval_seconds", 3600.0),
        tracking_prefix=raw.get("tracking_prefix", "APP"),
        webhook_url=raw.get("webhook_url"),
        webhook_token=webhook_token,
        retry=RetryConfig.from_dict(raw.get("retry")),
        alert_thresholds_hours={
            **EngineConfig().alert_thresholds_hours,
            **raw.get("alert_thresholds_hours", {}),
        },
    )
