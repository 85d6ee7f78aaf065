"""
Note classification using Ollama.

Provides:
- Destination folder, tags and file name suggestions for a note
- Content formatting against a user template
"""

import json
from typing import Any, Dict

import httpx
from loguru import logger

from app.utils.config import Settings, get_settings
from domains.inbox.errors import CollaboratorError
from domains.inbox.records import Classification

CLASSIFY_PROMPT = """You organize notes in a personal knowledge vault.
Given the note below, answer with a JSON object with the keys:
"destination_folder" (one of the existing folders, or a new short folder path),
"tags" (a list of at most 5 short lowercase tags without '#'),
"suggested_name" (a concise, descriptive file name without extension).

Existing folders: {folders}
Original file name: {filename}

Note:
{content}
"""

FORMAT_PROMPT = """Reformat the note below following these instructions.
Answer with the reformatted markdown only.

Instructions:
{template}

Note:
{content}
"""


class OllamaClassifier:
    """Classification client backed by the Ollama chat API."""

    def __init__(self, settings: Settings = None, transport: httpx.BaseTransport = None):
        """
        Initialize classifier.

        Args:
            settings: Application settings (defaults to the cached settings)
            transport: Optional httpx transport, used by tests
        """
        self.settings = settings or get_settings()
        self.ollama_url = self.settings.ollama_url.rstrip("/")
        self.model = self.settings.ollama_chat_model
        self.timeout = self.settings.classify_timeout_seconds
        self.transport = transport
        self.max_content_chars = 8000

    def _chat(self, prompt: str, json_output: bool) -> str:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": False,
        }
        if json_output:
            payload["format"] = "json"

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(f"{self.ollama_url}/api/chat", json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            raise CollaboratorError(f"Classification timed out after {self.timeout:.0f}s") from e
        except httpx.HTTPError as e:
            raise CollaboratorError(f"Classification request failed: {e}") from e
        except ValueError as e:
            raise CollaboratorError(f"Classification returned invalid JSON: {e}") from e

        message = data.get("message") or {}
        return message.get("content") or ""

    def classify(self, content: str, metadata: Dict[str, Any]) -> Classification:
        """
        Pick destination folder, tags and a name for a note.

        Args:
            content: Note content
            metadata: File metadata (filename, folders, ...)

        Returns:
            Classification result
        """
        prompt = CLASSIFY_PROMPT.format(
            folders=", ".join(metadata.get("folders", [])) or "(none)",
            filename=metadata.get("filename", ""),
            content=content[:self.max_content_chars],
        )

        answer = self._chat(prompt, json_output=True)

        try:
            data = json.loads(answer)
            data["tags"] = [str(t).strip().lstrip("#") for t in data.get("tags") or []]
            classification = Classification.model_validate(data)
        except (ValueError, TypeError, AttributeError) as e:
            raise CollaboratorError(f"Unusable classification answer: {answer[:200]}") from e

        logger.debug(f"Classified {metadata.get('filename')}: {classification.destination_folder}")
        return classification

    def format_content(self, content: str, template: str) -> str:
        """Reformat ``content`` following ``template`` instructions."""
        answer = self._chat(FORMAT_PROMPT.format(template=template, content=content), json_output=False)
        if not answer.strip():
            raise CollaboratorError("Formatting returned empty content")
        return answer
