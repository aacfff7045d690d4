"""Configuration loading and validation."""

import os
import json
import hashlib
import tempfile
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from .errors import ConfigError


DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
]


class ViewportConfig(BaseModel):
    """Browser viewport size."""
    width: int = Field(default=1920, ge=200, le=7680)
    height: int = Field(default=1080, ge=200, le=4320)


class SessionConfig(BaseModel):
    """Session pool configuration."""
    max_sessions: int = Field(default=5, ge=1, le=100)
    idle_timeout_seconds: float = Field(default=30 * 60, gt=0)
    sweep_interval_seconds: float = Field(default=5 * 60, gt=0)
    sessions_dir: str = Field(
        default_factory=lambda: os.path.join(tempfile.gettempdir(), "quantarum_sessions")
    )
    headless: bool = Field(default=True)
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)
    user_agents: list[str] = Field(default_factory=lambda: list(DEFAULT_USER_AGENTS))
    navigation_timeout_ms: int = Field(default=30000, ge=100)


class RetryConfig(BaseModel):
    """Retry policy configuration."""
    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay_ms: float = Field(default=1000.0, ge=0)
    max_jitter_ms: float = Field(default=1000.0, ge=0)


class InteractionConfig(BaseModel):
    """Human-paced interaction timing, all in milliseconds."""
    visibility_timeout_ms: int = Field(default=30000, ge=100)
    click_pause_ms: tuple[float, float] = Field(default=(100.0, 400.0))
    press_duration_ms: tuple[float, float] = Field(default=(50.0, 150.0))
    keystroke_delay_ms: tuple[float, float] = Field(default=(50.0, 200.0))
    poll_interval_ms: tuple[float, float] = Field(default=(500.0, 1500.0))
    move_steps: tuple[int, int] = Field(default=(5, 15))


class LoggingConfig(BaseModel):
    """Log output settings."""
    level: str = Field(default="warning")
    json_format: bool = Field(default=False)


class EngineConfig(BaseModel):
    """Main engine configuration."""
    name: str = Field(default="web_enhanced")
    version: str = Field(default="0.1.0")

    sessions: SessionConfig = Field(default_factory=SessionConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    interaction: InteractionConfig = Field(default_factory=InteractionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # Arbitrary script execution inside pages is opt-in
    allow_evaluate: bool = Field(default=False)
    debug: bool = Field(default=False)

    def config_hash(self) -> str:
        """Generate hash of config for change detection."""
        return hashlib.sha256(
            self.model_dump_json().encode()
        ).hexdigest()[:16]


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class ConfigLoader:
    """Loads engine configuration from a YAML/JSON file plus environment overrides."""

    ENV_CONFIG_PATH = "WEB_ENGINE_CONFIG"

    def __init__(self, environ: Optional[dict[str, str]] = None):
        self.environ = os.environ if environ is None else environ

    def load(self, path: Optional[str] = None) -> EngineConfig:
        """Load configuration, falling back to defaults when no file is given."""
        path = path or self.environ.get(self.ENV_CONFIG_PATH)
        data: dict[str, Any] = {}
        if path:
            data = self._load_file(Path(path))

        self._apply_env_overrides(data)

        try:
            return EngineConfig(**data)
        except PydanticValidationError as e:
            raise ConfigError(f"Invalid engine config: {e}", config_path=str(path) if path else None)

    def _apply_env_overrides(self, data: dict[str, Any]) -> None:
        env = self.environ
        sessions = data.setdefault("sessions", {})
        if "WEB_ENGINE_SESSIONS_DIR" in env:
            sessions["sessions_dir"] = env["WEB_ENGINE_SESSIONS_DIR"]
        if "WEB_ENGINE_MAX_SESSIONS" in env:
            try:
                sessions["max_sessions"] = int(env["WEB_ENGINE_MAX_SESSIONS"])
            except ValueError:
                raise ConfigError("WEB_ENGINE_MAX_SESSIONS must be an integer")
        if "WEB_ENGINE_HEADLESS" in env:
            sessions["headless"] = _env_bool(env["WEB_ENGINE_HEADLESS"])

        if "WEB_ENGINE_ALLOW_EVALUATE" in env:
            data["allow_evaluate"] = _env_bool(env["WEB_ENGINE_ALLOW_EVALUATE"])
        if "WEB_ENGINE_DEBUG" in env:
            data["debug"] = _env_bool(env["WEB_ENGINE_DEBUG"])

        logging_cfg = data.setdefault("logging", {})
        if "WEB_ENGINE_LOG_LEVEL" in env:
            logging_cfg["level"] = env["WEB_ENGINE_LOG_LEVEL"]
        if env.get("LOG_FORMAT") == "json":
            logging_cfg["json_format"] = True

    def _load_file(self, path: Path) -> dict[str, Any]:
        """Load YAML or JSON file."""
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}", config_path=str(path))

        try:
            content = path.read_text()
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(content) or {}
            elif path.suffix == ".json":
                data = json.loads(content)
            else:
                raise ConfigError(
                    f"Unsupported config format: {path.suffix}",
                    config_path=str(path)
                )
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}", config_path=str(path))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON: {e}", config_path=str(path))

        if not isinstance(data, dict):
            raise ConfigError("Config root must be a mapping", config_path=str(path))
        return data
