"""Configuration models for the HA-Firestore Bridge."""

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import AliasChoices, BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Flat keys of the add-on options.json and where they live in BridgeConfig
ADDON_OPTION_KEYS: dict[str, tuple[str, str]] = {
    "firebase_project_id": ("firestore", "project_id"),
    "firebase_service_account_path": ("firestore", "service_account_path"),
    "firebase_collection": ("firestore", "collection"),
    "settle_delay_seconds": ("sync", "settle_delay_seconds"),
    "log_level": ("observability", "log_level"),
}


class HubConfig(BaseModel):
    """Home Assistant connection configuration."""

    url: str = "http://supervisor/core"
    """Base URL of the hub; REST lives under /api, the event feed at /api/websocket."""

    token: SecretStr | None = None
    """Long-lived access token or the Supervisor token."""

    timeout_seconds: float = 10.0
    verify_ssl: bool = True
    reconnect_delay_min: float = 1.0
    reconnect_delay_max: float = 60.0

    @property
    def websocket_url(self) -> str:
        """Websocket URL derived from the REST base URL."""
        base = self.url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://") :]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://") :]
        return base + "/api/websocket"


class FirestoreConfig(BaseModel):
    """Cloud Firestore configuration."""

    enabled: bool = True
    project_id: str = ""
    """Firebase project id; empty means use the one in the service account file."""

    service_account_path: Path = Path("/config/firebase-service-account.json")
    collection: str = "device"


class SyncConfig(BaseModel):
    """Synchronization engine configuration."""

    domains: list[str] = Field(default_factory=lambda: ["switch", "light"])
    """Entity domains mirrored between hub and store."""

    settle_delay_seconds: float = 0.5
    """Wait after a hub command before reading back the converged state."""

    @field_validator("settle_delay_seconds")
    @classmethod
    def non_negative_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("settle_delay_seconds must not be negative")
        return value

    @field_validator("domains")
    @classmethod
    def non_empty_domains(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("at least one sync domain is required")
        return [d.strip().lower() for d in value]


class ObservabilityConfig(BaseModel):
    """Logging, metrics, and health check configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "console"] = "console"
    metrics_port: int = 9090
    health_port: int = 8080

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_log_level(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class BridgeConfig(BaseModel):
    """Root configuration for the HA-Firestore Bridge."""

    hub: HubConfig = Field(default_factory=HubConfig)
    firestore: FirestoreConfig = Field(default_factory=FirestoreConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    @model_validator(mode="before")
    @classmethod
    def nest_addon_options(cls, data: Any) -> Any:
        """Accept the flat option keys of the Home Assistant add-on manifest.

        Flat keys are folded into their section; explicit nested values win.
        """
        if not isinstance(data, dict):
            return data
        result = dict(data)
        for flat_key, (section, field_name) in ADDON_OPTION_KEYS.items():
            if flat_key not in result:
                continue
            value = result.pop(flat_key)
            nested = dict(result.get(section) or {})
            nested.setdefault(field_name, value)
            result[section] = nested
        # The add-on manifest's 'port' is the health/status port
        if "port" in result:
            nested = dict(result.get("observability") or {})
            nested.setdefault("health_port", result.pop("port"))
            result["observability"] = nested
        return result

    @classmethod
    def from_yaml(cls, path: Path) -> "BridgeConfig":
        """Load configuration from a YAML file (JSON files are valid YAML)."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})


class BridgeSettings(BaseSettings):
    """Environment-based settings that override config file values."""

    model_config = SettingsConfigDict(
        env_prefix="HA_FS_BRIDGE_",
        env_nested_delimiter="__",
    )

    config_file: Path = Path("/data/options.json")

    supervisor_token: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("HA_FS_BRIDGE_SUPERVISOR_TOKEN", "SUPERVISOR_TOKEN"),
    )
    """Hub token injected by the Supervisor when running as an add-on."""


def load_config(settings: BridgeSettings | None = None) -> BridgeConfig:
    """Load configuration from file, with environment overrides."""
    if settings is None:
        settings = BridgeSettings()

    if settings.config_file.exists():
        config = BridgeConfig.from_yaml(settings.config_file)
    else:
        config = BridgeConfig()

    if config.hub.token is None and settings.supervisor_token is not None:
        config.hub.token = settings.supervisor_token

    return config
