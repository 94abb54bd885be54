"""Configuration management for FlowSentry runs."""

import os
from typing import Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigurationError

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; FlowSentry/1.0; +https://github.com/dvasilev-git/flowsentry)"


class MonitoringConfig(BaseModel):
    """Main configuration for a probe/synthetic run."""

    # Inputs and outputs
    sites_file: str = Field(default="config/sites.json", description="JSON site list")
    results_directory: str = Field(default="results", description="Directory for dated result files")
    screenshots_directory: str = Field(default="screenshots", description="Directory for failure screenshots")

    # Logging / labelling
    log_level: str = Field(default="INFO", description="Logging level")
    region: str = Field(default="github-actions", description="Region label attached to exported samples")

    # Browser settings
    browser_headless: bool = Field(default=True, description="Run Chromium headless")
    chromium_path: Optional[str] = Field(default=None, description="Explicit Chromium executable")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User agent for every session")

    # Readiness bounds (seconds)
    navigation_timeout_seconds: float = Field(default=10.0, gt=0, description="Probe and step navigation bound")
    homepage_timeout_seconds: float = Field(default=15.0, gt=0, description="Initial synthetic homepage bound")
    selector_timeout_seconds: float = Field(default=5.0, gt=0, description="Wait-for-element bound")
    export_timeout_seconds: float = Field(default=10.0, gt=0, description="HTTP push timeout")

    # Network-settled heuristic
    network_idle_max_inflight: int = Field(default=2, ge=0, description="Requests allowed in flight while settled")
    network_idle_quiet_ms: int = Field(default=500, ge=0, description="Quiet period before the page counts as settled")


class ExportCredentials(BaseModel):
    """Backend credentials. Their presence is the only switch for each export path."""

    prometheus_url: Optional[str] = None
    prometheus_user: Optional[str] = None
    loki_url: Optional[str] = None
    loki_user: Optional[str] = None
    api_key: Optional[str] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ExportCredentials":
        source = os.environ if env is None else env

        def _get(name: str) -> Optional[str]:
            value = (source.get(name) or "").strip()
            return value or None

        return cls(
            prometheus_url=_get("GRAFANA_PROMETHEUS_URL"),
            prometheus_user=_get("GRAFANA_PROMETHEUS_USER"),
            loki_url=_get("GRAFANA_LOKI_URL"),
            loki_user=_get("GRAFANA_LOKI_USER"),
            api_key=_get("GRAFANA_API_KEY"),
        )

    @property
    def metrics_enabled(self) -> bool:
        return bool(self.prometheus_url and self.api_key)

    @property
    def logs_enabled(self) -> bool:
        return bool(self.loki_url and self.loki_user and self.api_key)


def load_config(config_path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> MonitoringConfig:
    """Load configuration from an optional YAML file, then apply environment overrides."""
    source = os.environ if env is None else env
    if config_path is None:
        config_path = source.get("FLOWSENTRY_CONFIG", "config/monitoring.yaml")

    config_data: dict = {}

    if os.path.exists(config_path):
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {exc}") from exc
        if not isinstance(config_data, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")

    env_overrides = {
        "log_level": source.get("LOG_LEVEL"),
        "region": source.get("FLOWSENTRY_REGION"),
        "results_directory": source.get("FLOWSENTRY_RESULTS_DIR"),
        "screenshots_directory": source.get("FLOWSENTRY_SCREENSHOTS_DIR"),
        "sites_file": source.get("FLOWSENTRY_SITES_FILE"),
        "browser_headless": source.get("BROWSER_HEADLESS"),
        "chromium_path": source.get("CHROMIUM_PATH"),
    }

    for key, value in env_overrides.items():
        if value is not None and value != "":
            if key == "browser_headless":
                value = value.lower() in ("true", "1", "yes")
            config_data[key] = value

    try:
        return MonitoringConfig(**config_data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid monitoring config: {exc}") from exc
