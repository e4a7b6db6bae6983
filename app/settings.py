import os
import pathlib
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from graph.catalog import CONFIG_PATH, UNKNOWN_MODEL_POLICIES
from graph.errors import ConfigError

ROOT = pathlib.Path(__file__).resolve().parents[1]
RESPONSE_FORMATS = ("structured", "legacy")


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, resolved once at startup."""
    api_key: str
    base_url: Optional[str] = None
    config_path: str = CONFIG_PATH
    response_format: str = "structured"
    timeout_sec: float = 30.0
    max_retries: int = 1
    retry_jitter_sec: float = 1.0
    unknown_model_policy: Optional[str] = None

    @classmethod
    def from_env(cls, load_files: bool = True) -> "Settings":
        if load_files:
            # Never overrides variables already set in the process environment.
            load_dotenv(ROOT / "config" / ".env.local")
            load_dotenv()

        key = os.getenv("OPENROUTER_API_KEY", "").strip()
        if not key:
            raise ConfigError("OPENROUTER_API_KEY is not set")

        fmt = os.getenv("ROUTER_RESPONSE_FORMAT", "structured").strip().lower()
        if fmt not in RESPONSE_FORMATS:
            raise ConfigError(f"ROUTER_RESPONSE_FORMAT must be one of {RESPONSE_FORMATS}, got '{fmt}'")

        policy = os.getenv("UNKNOWN_MODEL_POLICY") or None
        if policy and policy not in UNKNOWN_MODEL_POLICIES:
            raise ConfigError(f"UNKNOWN_MODEL_POLICY must be one of {UNKNOWN_MODEL_POLICIES}, got '{policy}'")

        try:
            timeout = float(os.getenv("UPSTREAM_TIMEOUT_SEC", "30"))
            retries = int(os.getenv("UPSTREAM_MAX_RETRIES", "1"))
            jitter = float(os.getenv("UPSTREAM_RETRY_JITTER_SEC", "1.0"))
        except ValueError as e:
            raise ConfigError(f"Invalid upstream setting: {e}") from e

        return cls(
            api_key=key,
            base_url=os.getenv("OPENROUTER_BASE_URL") or None,
            config_path=os.getenv("ROUTER_CONFIG", CONFIG_PATH),
            response_format=fmt,
            timeout_sec=timeout,
            max_retries=max(0, retries),
            retry_jitter_sec=max(0.0, jitter),
            unknown_model_policy=policy,
        )
