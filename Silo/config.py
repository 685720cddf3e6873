"""
Configuration module for Silo.
Stores backend endpoints, paging sizes and client timing knobs.
"""

import os
from typing import Dict, Any


class Config:
    """Application configuration class."""

    # Backend (hosted BaaS) Configuration
    SILO_URL = os.environ.get("SILO_URL", "http://localhost:54321")
    SILO_ANON_KEY = os.environ.get("SILO_ANON_KEY", "")
    SILO_ENV = os.environ.get("SILO_ENV", "development")

    # Paging
    DM_PAGE_SIZE = int(os.environ.get("SILO_DM_PAGE_SIZE", "500"))
    REPLY_PAGE_SIZE = int(os.environ.get("SILO_REPLY_PAGE_SIZE", "200"))
    NOTIFICATION_PAGE_SIZE = 50

    # Unread backstop refresh (seconds)
    UNREAD_REFRESH_SECONDS = float(os.environ.get("SILO_UNREAD_REFRESH_SECONDS", "30"))

    # Composer
    SUBMIT_TIMEOUT_SECONDS = float(os.environ.get("SILO_SUBMIT_TIMEOUT_SECONDS", "30"))
    MIN_SEND_INTERVAL_SECONDS = 0.8

    # Reply nesting: flat, one_level or arbitrary
    THREADING_MODE = os.environ.get("SILO_THREADING_MODE", "one_level")

    # Realtime
    REALTIME_HEARTBEAT_SECONDS = 25.0
    REALTIME_RECONNECT_DELAY_SECONDS = 3.0

    @classmethod
    def get_config(cls) -> Dict[str, Any]:
        """Get all configuration values as a dictionary."""
        return {
            "SILO_URL": cls.SILO_URL,
            "SILO_ANON_KEY": cls.SILO_ANON_KEY,
            "SILO_ENV": cls.SILO_ENV,
            "DM_PAGE_SIZE": cls.DM_PAGE_SIZE,
            "REPLY_PAGE_SIZE": cls.REPLY_PAGE_SIZE,
            "NOTIFICATION_PAGE_SIZE": cls.NOTIFICATION_PAGE_SIZE,
            "UNREAD_REFRESH_SECONDS": cls.UNREAD_REFRESH_SECONDS,
            "SUBMIT_TIMEOUT_SECONDS": cls.SUBMIT_TIMEOUT_SECONDS,
            "MIN_SEND_INTERVAL_SECONDS": cls.MIN_SEND_INTERVAL_SECONDS,
            "THREADING_MODE": cls.THREADING_MODE,
            "REALTIME_HEARTBEAT_SECONDS": cls.REALTIME_HEARTBEAT_SECONDS,
            "REALTIME_RECONNECT_DELAY_SECONDS": cls.REALTIME_RECONNECT_DELAY_SECONDS,
        }


# Create config instance
config = Config()
