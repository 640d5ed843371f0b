"""
Configuration Management
Loads settings from YAML files and environment variables
"""
import yaml
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # API Settings
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = ["http://localhost:3000"]

    # Supabase
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None

    # Shared secret for assistant tool calls (x-denku-secret)
    tool_secret: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()


class ConfigManager:
    """Manages loading and merging configuration from multiple sources"""

    def __init__(self, env: str = "development", config_dir: Optional[Path] = None):
        self.env = env
        self.config_dir = config_dir or Path(__file__).parent.parent.parent / "config"
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration files in order of precedence"""
        # Load default config if exists
        default_path = self.config_dir / "default.yaml"
        if default_path.exists():
            self._config = self._load_yaml(default_path)

        # Load environment-specific config
        env_path = self.config_dir / f"{self.env}.yaml"
        if env_path.exists():
            env_config = self._load_yaml(env_path)
            self._deep_merge(self._config, env_config)

        # Substitute environment variables
        self._substitute_env_vars(self._config)

    def _load_yaml(self, path: Path) -> Dict:
        """Load YAML file"""
        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}

    def _substitute_env_vars(self, config: Dict) -> None:
        """Replace ${VAR_NAME} with environment variable values"""
        for key, value in config.items():
            if isinstance(value, dict):
                self._substitute_env_vars(value)
            elif isinstance(value, str) and value.startswith("${") and value.endswith("}"):
                env_var = value[2:-1]
                config[key] = os.getenv(env_var, value)

    def _deep_merge(self, base: Dict, override: Dict) -> None:
        """Recursively merge override into base"""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: config.get("ingestion.rate_limit.max_starts") -> 10
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass
class IngestionConfig:
    """Policy knobs for the call-event ingestion path."""
    placeholder_prefix: str = "webcall:"
    call_type: str = "webcall"
    direction: str = "inbound"

    rate_limit_enabled: bool = True
    rate_limit_window_seconds: int = 600
    rate_limit_max_starts: int = 10
    rate_limit_fail_open: bool = True
    rate_limit_action: str = "webcall.start_attempt"

    min_engaged_seconds: float = 8
    partial_min_seconds: float = 15
    long_call_seconds: float = 480

    cost_payload_paths: List[str] = field(default_factory=lambda: [
        "message.cost",
        "message.call.cost",
        "call.cost",
        "message.costBreakdown.total",
        "costBreakdown.total",
        "cost",
    ])

    @classmethod
    def from_config(cls, config: ConfigManager) -> "IngestionConfig":
        defaults = cls()

        def read(key: str, fallback: Any) -> Any:
            return config.get(f"ingestion.{key}", fallback)

        return cls(
            placeholder_prefix=str(read("placeholder_prefix", defaults.placeholder_prefix)),
            call_type=str(read("call_type", defaults.call_type)),
            direction=str(read("direction", defaults.direction)),
            rate_limit_enabled=_as_bool(read("rate_limit.enabled", defaults.rate_limit_enabled)),
            rate_limit_window_seconds=int(read("rate_limit.window_seconds", defaults.rate_limit_window_seconds)),
            rate_limit_max_starts=int(read("rate_limit.max_starts", defaults.rate_limit_max_starts)),
            rate_limit_fail_open=_as_bool(read("rate_limit.fail_open", defaults.rate_limit_fail_open)),
            rate_limit_action=str(read("rate_limit.action", defaults.rate_limit_action)),
            min_engaged_seconds=float(read("completion.min_engaged_seconds", defaults.min_engaged_seconds)),
            partial_min_seconds=float(read("completion.partial_min_seconds", defaults.partial_min_seconds)),
            long_call_seconds=float(read("completion.long_call_seconds", defaults.long_call_seconds)),
            cost_payload_paths=list(read("cost.payload_paths", defaults.cost_payload_paths)),
        )


@lru_cache
def get_ingestion_config() -> IngestionConfig:
    """Ingestion policy for the current ENVIRONMENT, cached per process."""
    return IngestionConfig.from_config(ConfigManager(get_settings().environment))
