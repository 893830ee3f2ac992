"""Configuration module."""

from cosmos_extract.config.settings import (
    GatewaySettings,
    ReportSettings,
    RunConfig,
    Settings,
    get_settings,
    load_settings,
)

__all__ = [
    "GatewaySettings",
    "ReportSettings",
    "RunConfig",
    "Settings",
    "get_settings",
    "load_settings",
]
