"""Configuration management for the invoice dashboard."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import yaml

PASSWORD_STRATEGIES = ("credentials", "identity")

_ENV_KEYS = {
    "supabase_url": "INVOICEDESK_SUPABASE_URL",
    "supabase_key": "INVOICEDESK_SUPABASE_KEY",
    "session_secret": "INVOICEDESK_SESSION_SECRET",
    "secure_cookies": "INVOICEDESK_SESSION_SECURE",
    "session_ttl_hours": "INVOICEDESK_SESSION_TTL_HOURS",
    "site_url": "INVOICEDESK_SITE_URL",
    "oauth_providers": "INVOICEDESK_OAUTH_PROVIDERS",
    "password_strategy": "INVOICEDESK_PASSWORD_STRATEGY",
}


def _parse_flag(key: str, value: object) -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"", "0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for '{key}': {value!r}")


def _parse_providers(value: object) -> Tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        items = str(value).split(",")
    return tuple(item.strip().lower() for item in items if item.strip())


@dataclass(frozen=True)
class AppConfig:
    """Settings for the web application and its Supabase backend."""

    supabase_url: str = ""
    supabase_key: str = ""
    session_secret: str = ""
    secure_cookies: bool = False
    session_ttl_hours: float = 8.0
    site_url: Optional[str] = None
    oauth_providers: Tuple[str, ...] = field(default=("google",))
    password_strategy: str = "credentials"

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "AppConfig":
        """Create an :class:`AppConfig` from raw dictionary data."""

        unknown = set(data.keys()) - set(_ENV_KEYS.keys())
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        values: Dict[str, object] = {}
        for key, raw in data.items():
            if raw is None:
                continue
            if key == "secure_cookies":
                values[key] = _parse_flag(key, raw)
            elif key == "session_ttl_hours":
                try:
                    ttl = float(raw)  # type: ignore[arg-type]
                except (TypeError, ValueError) as exc:
                    raise ValueError(f"Invalid value for 'session_ttl_hours': {raw!r}") from exc
                if ttl <= 0:
                    raise ValueError("'session_ttl_hours' must be positive")
                values[key] = ttl
            elif key == "oauth_providers":
                values[key] = _parse_providers(raw)
            elif key == "password_strategy":
                strategy = str(raw).strip().lower()
                if strategy not in PASSWORD_STRATEGIES:
                    raise ValueError(
                        f"Invalid value for 'password_strategy': {raw!r} "
                        f"(expected one of {', '.join(PASSWORD_STRATEGIES)})"
                    )
                values[key] = strategy
            elif key == "site_url":
                cleaned = str(raw).strip().rstrip("/")
                values[key] = cleaned or None
            else:
                values[key] = str(raw).strip()
        return AppConfig(**values)  # type: ignore[arg-type]

    def with_overrides(self, overrides: Mapping[str, object]) -> "AppConfig":
        if not overrides:
            return self
        parsed = AppConfig.from_dict(overrides)
        return replace(self, **{key: getattr(parsed, key) for key in overrides if overrides[key] is not None})

    def require_backend(self) -> None:
        missing = [
            env
            for key, env in (
                ("supabase_url", _ENV_KEYS["supabase_url"]),
                ("supabase_key", _ENV_KEYS["supabase_key"]),
            )
            if not getattr(self, key)
        ]
        if missing:
            raise ValueError(f"Missing required configuration: {', '.join(missing)}")


def load_config(config_path: Path) -> AppConfig:
    """Load settings from a YAML file."""
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping at the top level")
    return AppConfig.from_dict(raw)


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "invoicedesk.yaml").resolve(strict=False)
    return candidate


def config_from_env(environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Build the configuration from the optional YAML file and environment variables.

    Environment variables take precedence over values from the file.
    """

    env = os.environ if environ is None else environ
    path = resolve_config_path(env.get("INVOICEDESK_CONFIG"))
    if path.exists():
        config = load_config(path)
    elif env.get("INVOICEDESK_CONFIG"):
        raise ValueError(f"Configuration file not found: {path}")
    else:
        config = AppConfig()

    overrides = {key: env[name] for key, name in _ENV_KEYS.items() if env.get(name) is not None}
    return config.with_overrides(overrides)


__all__ = ["AppConfig", "PASSWORD_STRATEGIES", "config_from_env", "load_config", "resolve_config_path"]
