"""
Unified Configuration Module for OpenOrbit

All configuration settings are centralized here.
Import from this module: from api.config import config

Budget ceilings and pacing policy live in core.constants and are not
configurable.
"""

import os
from typing import List
from dataclasses import dataclass, field


@dataclass
class AppConfig:
    """Unified application configuration."""

    # === Server Settings ===
    HOST: str = os.getenv("HOST", "127.0.0.1")
    PORT: int = int(os.getenv("PORT", "8080"))
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    # === CORS Settings ===
    CORS_ORIGINS: List[str] = field(default_factory=lambda: [
        origin.strip() for origin in
        os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    ])

    # === Paths ===
    DATA_DIR: str = os.getenv("DATA_DIR", "./data")
    DATABASE_PATH: str = os.getenv("DATABASE_PATH", "./data/openorbit.db")
    LOG_DIR: str = os.getenv("LOG_DIR", "./logs")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    PLUGIN_ROOT: str = os.getenv("PLUGIN_ROOT", "./plugins")

    # === Live View ===
    LIVE_STALE_TIMEOUT_SECONDS: float = float(os.getenv("LIVE_STALE_TIMEOUT_SECONDS", "10"))
    LIVE_TICK_SECONDS: float = float(os.getenv("LIVE_TICK_SECONDS", str(1 / 60)))

    # === Screencast (CDP) ===
    SCREENCAST_QUALITY: int = int(os.getenv("SCREENCAST_QUALITY", "40"))
    SCREENCAST_MAX_WIDTH: int = int(os.getenv("SCREENCAST_MAX_WIDTH", "1280"))
    SCREENCAST_MAX_HEIGHT: int = int(os.getenv("SCREENCAST_MAX_HEIGHT", "720"))
    SCREENCAST_EVERY_NTH_FRAME: int = int(os.getenv("SCREENCAST_EVERY_NTH_FRAME", "2"))

    # === Valuation Enrichment ===
    ENRICHMENT_DELAY_MIN_SECONDS: float = float(os.getenv("ENRICHMENT_DELAY_MIN_SECONDS", "5"))
    ENRICHMENT_DELAY_MAX_SECONDS: float = float(os.getenv("ENRICHMENT_DELAY_MAX_SECONDS", "10"))
    VALUE_FIELD_NAME: str = os.getenv("VALUE_FIELD_NAME", "ARV")

    @property
    def plugin_root(self) -> str:
        return self.PLUGIN_ROOT

    @property
    def screencast_options(self) -> dict:
        """Parameters for CDP Page.startScreencast."""
        return {
            "format": "jpeg",
            "quality": self.SCREENCAST_QUALITY,
            "maxWidth": self.SCREENCAST_MAX_WIDTH,
            "maxHeight": self.SCREENCAST_MAX_HEIGHT,
            "everyNthFrame": self.SCREENCAST_EVERY_NTH_FRAME,
        }

    def validate(self) -> List[str]:
        """Validate configuration and return list of problems."""
        problems = []

        if not 0 <= self.SCREENCAST_QUALITY <= 100:
            problems.append("SCREENCAST_QUALITY must be between 0 and 100")
        if self.SCREENCAST_EVERY_NTH_FRAME < 1:
            problems.append("SCREENCAST_EVERY_NTH_FRAME must be at least 1")
        if self.LIVE_TICK_SECONDS <= 0:
            problems.append("LIVE_TICK_SECONDS must be positive")
        if self.LIVE_STALE_TIMEOUT_SECONDS <= 0:
            problems.append("LIVE_STALE_TIMEOUT_SECONDS must be positive")
        if self.ENRICHMENT_DELAY_MIN_SECONDS > self.ENRICHMENT_DELAY_MAX_SECONDS:
            problems.append("ENRICHMENT_DELAY_MIN_SECONDS exceeds ENRICHMENT_DELAY_MAX_SECONDS")

        return problems


# Global config instance
config = AppConfig()


def get_config() -> AppConfig:
    """Get the application configuration."""
    return config
