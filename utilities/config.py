"""
Configuration management using environment variables.
Handles all patrol settings with proper validation and defaults.
"""

import math
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class PatrolConfig(BaseSettings):
    """
    Process-wide settings for the page patrol.
    Every field can be set through a PATROL_-prefixed environment variable or .env entry.
    """

    # Logging Configuration
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")
    log_file: Optional[str] = Field(default=None)
    debug: bool = Field(default=False)

    # WebDriver Configuration
    webdriver_host: str = Field(default="localhost")
    webdriver_ports: List[int] = Field(default=[9515])
    page_load_timeout: float = Field(default=30.0)
    element_wait_timeout: float = Field(default=10.0)
    fetch_timeout: float = Field(default=60.0)

    # Simple-mode HTTP Configuration
    request_timeout: float = Field(default=30.0)
    rate_limit_per_second: float = Field(default=2.0)

    # Patrol Configuration
    default_interval_minutes: float = Field(default=1.0)
    tick_seconds: float = Field(default=1.0)
    max_concurrent_fetches: Optional[int] = Field(default=None)
    fetch_retry_attempts: int = Field(default=0)
    retry_delay: float = Field(default=1.0)
    shutdown_grace_seconds: float = Field(default=10.0)

    # Change Detection
    normalization: str = Field(default="strip")
    ignore_patterns: List[str] = Field(default_factory=list)

    # Fingerprint Store
    store_backend: str = Field(default="json")
    mongodb_url: str = Field(default="mongodb://localhost:27017")
    mongodb_database: str = Field(default="page_patrol")
    mongodb_collection: str = Field(default="fingerprints")

    # Notification
    alerts_per_hour_per_target: int = Field(default=10)
    events_file: Optional[str] = Field(default=None)

    # API
    api_enabled: bool = Field(default=False)
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=3000)

    model_config = {
        "env_prefix": "PATROL_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore"
    }

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        """Ensure log level is valid."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level must be one of: {valid_levels}')
        return v.upper()

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v):
        """Ensure log format is valid."""
        valid_formats = ['json', 'console']
        if v.lower() not in valid_formats:
            raise ValueError(f'log_format must be one of: {valid_formats}')
        return v.lower()

    @field_validator('webdriver_ports')
    @classmethod
    def validate_webdriver_ports(cls, v):
        if not v:
            raise ValueError('at least one webdriver port is required')
        for port in v:
            if port < 1 or port > 65535:
                raise ValueError(f'invalid webdriver port: {port}')
        return v

    @field_validator('fetch_timeout')
    @classmethod
    def validate_fetch_timeout(cls, v):
        if v < 5 or v > 600:
            raise ValueError('fetch_timeout must be between 5 and 600 seconds')
        return v

    @field_validator('rate_limit_per_second')
    @classmethod
    def validate_rate_limit(cls, v):
        if v < 0.1 or v > 10:
            raise ValueError('rate_limit_per_second must be between 0.1 and 10')
        return v

    @field_validator('default_interval_minutes', 'tick_seconds')
    @classmethod
    def validate_positive(cls, v):
        if not math.isfinite(v) or v <= 0:
            raise ValueError('must be positive and finite')
        return v

    @field_validator('max_concurrent_fetches')
    @classmethod
    def validate_concurrency(cls, v):
        """Ensure concurrent fetches is reasonable."""
        if v is not None and (v < 1 or v > 50):
            raise ValueError('max_concurrent_fetches must be between 1 and 50')
        return v

    @field_validator('fetch_retry_attempts')
    @classmethod
    def validate_retry_attempts(cls, v):
        if v < 0 or v > 10:
            raise ValueError('fetch_retry_attempts must be between 0 and 10')
        return v

    @field_validator('normalization')
    @classmethod
    def validate_normalization(cls, v):
        valid_policies = ['raw', 'strip', 'whitespace']
        if v.lower() not in valid_policies:
            raise ValueError(f'normalization must be one of: {valid_policies}')
        return v.lower()

    @field_validator('store_backend')
    @classmethod
    def validate_store_backend(cls, v):
        valid_backends = ['json', 'mongodb']
        if v.lower() not in valid_backends:
            raise ValueError(f'store_backend must be one of: {valid_backends}')
        return v.lower()

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path as Path object."""
        if self.log_file:
            return Path(self.log_file)
        return None

    def get_concurrency_limit(self) -> int:
        """Concurrent cycles allowed; defaults to one per WebDriver session."""
        return self.max_concurrent_fetches or len(self.webdriver_ports)

    def get_user_agent(self) -> str:
        """User agent for simple-mode HTTP fetches."""
        return "PagePatrol/1.0"

    def get_headers(self) -> dict:
        """Default headers for simple-mode HTTP requests."""
        return {
            "User-Agent": self.get_user_agent(),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        }
