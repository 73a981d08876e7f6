# src/config.py
"""
Ben-Or Node Configuration Module - Environment-based configuration
Timings are stored in milliseconds (as configured) and exposed in seconds
for the asyncio primitives that consume them.
"""

import os
from typing import Optional
from functools import lru_cache

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


class Settings:
    """Process-wide settings loaded from environment variables"""

    # ==========================================================================
    # Application Settings
    # ==========================================================================
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR: str = os.getenv("LOG_DIR", "logs")
    LOG_FILE: Optional[str] = os.getenv("LOG_FILE") or None
    LOG_MAX_SIZE_MB: int = int(os.getenv("LOG_MAX_SIZE_MB", "50"))

    # ==========================================================================
    # Node Addressing
    # ==========================================================================
    NODE_HOST: str = os.getenv("NODE_HOST", "localhost")
    BASE_NODE_PORT: int = int(os.getenv("BASE_NODE_PORT", "3000"))

    # ==========================================================================
    # Protocol Timings (milliseconds)
    # ==========================================================================
    POLL_INTERVAL_MS: int = int(os.getenv("POLL_INTERVAL_MS", "10"))
    QUORUM_TIMEOUT_MS: int = int(os.getenv("QUORUM_TIMEOUT_MS", "200"))
    ROUND_PAUSE_MS: int = int(os.getenv("ROUND_PAUSE_MS", "10"))
    SEND_TIMEOUT_MS: int = int(os.getenv("SEND_TIMEOUT_MS", "1000"))

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @property
    def poll_interval(self) -> float:
        return self.POLL_INTERVAL_MS / 1000

    @property
    def quorum_timeout(self) -> float:
        return self.QUORUM_TIMEOUT_MS / 1000

    @property
    def round_pause(self) -> float:
        return self.ROUND_PAUSE_MS / 1000

    @property
    def send_timeout(self) -> float:
        return self.SEND_TIMEOUT_MS / 1000

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def is_testing(self) -> bool:
        return self.ENVIRONMENT.lower() == "testing"

    def node_url(self, node_id: int) -> str:
        """Base URL of the node with the given id"""
        return f"http://{self.NODE_HOST}:{self.BASE_NODE_PORT + node_id}"

    def get_log_config(self) -> dict:
        """Get structured logging configuration for logging.config.dictConfig"""
        log_file = self.LOG_FILE or os.path.join(self.LOG_DIR, "benor.log")
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)

        return {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "correlation": {
                    "()": "src.middleware.correlation.CorrelationIdFilter"
                }
            },
            "formatters": {
                "default": {
                    "format": "%(asctime)s [%(levelname)s] [%(correlation_id)s] %(name)s: %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S"
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "filters": ["correlation"],
                    "stream": "ext://sys.stdout"
                },
                "file": {
                    "class": "logging.handlers.RotatingFileHandler",
                    "formatter": "default",
                    "filters": ["correlation"],
                    "filename": log_file,
                    "maxBytes": self.LOG_MAX_SIZE_MB * 1024 * 1024,
                    "backupCount": 5
                }
            },
            "root": {
                "level": self.LOG_LEVEL,
                "handlers": ["console", "file"]
            }
        }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Global settings instance
settings = get_settings()
