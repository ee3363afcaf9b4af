"""
Configuration Settings.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Client settings."""

    # App info
    app_name: str = "ChavrusaAI"
    app_version: str = "1.0.0"
    debug: bool = False

    # Remote chat API
    api_base_url: str = "http://localhost:8081/api"
    default_timeout: float = 15.0
    request_timeout: float = 30.0  # upper bound for a single message send

    # Realtime channel (socket.io)
    realtime_url: str = "http://localhost:8081"
    realtime_reconnection_attempts: int = 5
    realtime_reconnection_delay: float = 1.0

    # Identity backend (Supabase)
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    password_reset_redirect_url: Optional[str] = None

    # Startup ordering
    auth_ready_timeout: float = 5.0
    rehydration_timeout: float = 2.0

    # Local persistence
    local_storage_path: str = "./data"
    chat_record_name: str = "chavrusa-chat-persist"
    auth_record_name: str = "chavrusa-auth"

    # Notices
    notice_history_size: int = 50

    # Logging configuration
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file_path: str = "./logs/chavrusa.log"
    log_file_enabled: bool = True
    log_console_enabled: bool = True
    log_json_format: bool = True  # JSON format for files, human-readable for console
    log_api_requests: bool = True  # Log all outgoing API requests/responses

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
