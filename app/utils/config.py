"""
Configuration management for the inbox organizer.

Uses pydantic-settings to load configuration from environment variables
and .env files.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Vault Configuration
    vault_path: Path = Path("~/vault")
    inbox_folder: str = "_Organizer/Inbox"
    error_folder: str = "_Organizer/Error"
    bypassed_folder: str = "_Organizer/Bypassed"
    attachments_folder: str = "_Organizer/Attachments"

    # Record Store Configuration
    record_store_path: Path = Path("~/.local/share/inbox-organizer/records.json")
    persist_debounce_seconds: float = 1.0

    # Watcher Configuration
    watch_inbox: bool = True
    watch_settle_seconds: float = 1.0

    # Pipeline Configuration
    inbox_workers: int = 2
    max_file_size_mb: float = 25.0
    supported_extensions: str = "md,txt,pdf,png,jpg,jpeg,gif,webp,mp3,wav,m4a,webm,ogg"
    ignore_patterns: str = "~$*,*.icloud"
    format_template: Optional[str] = None
    append_to_note: Optional[str] = None

    # API Configuration
    api_port: int = 8000
    log_level: str = "INFO"
    api_title: str = "Inbox Organizer API"
    api_version: str = "1.0.0"

    # Ollama Configuration
    ollama_url: str = "http://localhost:11434"
    ollama_chat_model: str = "llama3.2"
    classify_timeout_seconds: float = 60.0

    # Transcription Configuration
    transcription_url: str = "http://localhost:8080"
    transcription_api_key: Optional[str] = None
    transcription_model: str = "whisper-1"
    transcription_timeout_seconds: float = 300.0

    # YouTube Configuration
    youtube_timeout_seconds: float = 20.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def get_vault_path(self) -> Path:
        """Vault root with user home expanded."""
        return self.vault_path.expanduser()

    def get_record_store_path(self) -> Path:
        """Record store document path with user home expanded."""
        return self.record_store_path.expanduser()

    def get_supported_extensions(self) -> set[str]:
        """Parse supported extensions into a set (lowercase, no dot)."""
        return {
            e.strip().lower().lstrip('.')
            for e in self.supported_extensions.split(',')
            if e.strip()
        }

    def get_ignore_patterns(self) -> list[str]:
        """Parse ignore patterns into list."""
        return [p.strip() for p in self.ignore_patterns.split(',') if p.strip()]

    def max_file_size_bytes(self) -> int:
        return int(self.max_file_size_mb * 1024 * 1024)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
