"""
Audio transcription via an OpenAI-compatible transcription endpoint.
"""

from typing import Dict

import httpx
from loguru import logger

from app.utils.config import Settings, get_settings
from app.utils.helpers import format_bytes
from domains.inbox.errors import CollaboratorError


class TranscriptionClient:
    """Client for the ``/v1/audio/transcriptions`` endpoint."""

    def __init__(self, settings: Settings = None, transport: httpx.BaseTransport = None):
        self.settings = settings or get_settings()
        self.base_url = self.settings.transcription_url.rstrip("/")
        self.timeout = self.settings.transcription_timeout_seconds
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        if not self.settings.transcription_api_key:
            return {}
        return {"Authorization": f"Bearer {self.settings.transcription_api_key}"}

    def transcribe_audio(self, data: bytes, filename: str) -> str:
        """
        Transcribe an audio file.

        Args:
            data: Raw audio bytes
            filename: Original file name (the server infers the format from it)

        Returns:
            Transcribed text
        """
        logger.info(f"Transcribing {filename} ({format_bytes(len(data))})")

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(
                    f"{self.base_url}/v1/audio/transcriptions",
                    headers=self._headers(),
                    data={"model": self.settings.transcription_model},
                    files={"file": (filename, data)},
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.TimeoutException as e:
            raise CollaboratorError(f"Transcription timed out after {self.timeout:.0f}s") from e
        except httpx.HTTPError as e:
            raise CollaboratorError(f"Transcription request failed: {e}") from e
        except ValueError as e:
            raise CollaboratorError(f"Transcription returned invalid JSON: {e}") from e

        text = (payload.get("text") or "").strip()
        if not text:
            raise CollaboratorError(f"No speech recognised in {filename}")

        logger.success(f"Transcribed {len(text)} characters from {filename}")
        return text
