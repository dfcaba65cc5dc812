"""Runtime configuration, logging and secrets."""

from .settings import ConfigError, RepoTarget, Settings, get_settings, set_settings_overrides

__all__ = ["ConfigError", "RepoTarget", "Settings", "get_settings", "set_settings_overrides"]
