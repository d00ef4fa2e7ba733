"""
Text-generation collaborator used for the semantic half of a bolted embedding.

The store only needs one capability: given a prompt, asynchronously return a
completion. ``GeminiTextGenerator`` provides it over Google GenAI.
"""

from __future__ import annotations

import os
from typing import Any, Protocol

from google.genai import Client as GenAIClient
from google.genai.types import HttpOptions

from .errors import ExternalGenerationFailure


_DEFAULT_MODEL = "gemini-2.0-flash"

DESCRIPTION_PROMPT = """
Describe the following {content_type} content in plain language for a search index.
Summarize its subject, purpose, key entities and the vocabulary a reader would use
to look for it. Answer with a single paragraph and no preamble.

Content:
```
{content}
```
"""


def build_description_prompt(content: str, content_type: str, max_chars: int) -> str:
    """Return the description prompt for *content*, truncated to *max_chars*."""
    snippet = content if len(content) <= max_chars else content[:max_chars] + "\n[...]"
    return DESCRIPTION_PROMPT.format(content_type=content_type, content=snippet).strip()


class TextGenerator(Protocol):
    """Async prompt -> completion capability."""

    async def generate_text(self, prompt: str) -> str:
        """Return a completion for *prompt*."""


class GeminiTextGenerator:
    """Generate descriptions via Google GenAI."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        client: Any | None = None,
    ) -> None:
        self.model = model or os.getenv("BOLTED_STORE_GENERATION_MODEL", _DEFAULT_MODEL)

        if client is not None:
            self._client = client
        else:
            resolved_key = api_key or os.getenv("GOOGLE_API_KEY")
            if resolved_key is None:
                raise ValueError(
                    "GOOGLE_API_KEY not found. "
                    "Provide api_key or set the environment variable."
                )
            self._client = GenAIClient(
                api_key=resolved_key, http_options=HttpOptions(api_version="v1beta")
            )

    async def generate_text(self, prompt: str) -> str:
        try:
            response = await self._client.aio.models.generate_content(
                model=self.model,
                contents=prompt,
            )
        except Exception as exc:
            raise ExternalGenerationFailure(f"Text generation failed: {exc}") from exc
        text = getattr(response, "text", None)
        if not text:
            raise ExternalGenerationFailure("Text generation returned an empty response")
        return str(text)
