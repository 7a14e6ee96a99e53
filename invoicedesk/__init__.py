"""Invoice and customer dashboard backed by a hosted Supabase project."""

from __future__ import annotations

from typing import Any

from .config import AppConfig, config_from_env


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the dashboard application."""

    from .service import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = ["AppConfig", "config_from_env", "create_app"]
