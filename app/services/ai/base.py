"""
Contract shared by the generative AI backends.

A backend takes a prompt and a JSON schema and returns the parsed JSON
object, or raises. Transport and quota failures raise AIBackendError; output
that is not a JSON object raises ExtractionError.
"""

import json
import re
from abc import ABC, abstractmethod
from typing import Any

from app.features.inbox_actions.errors import ExtractionError
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are an AI assistant that extracts key events and action items from school emails.
You provide both human-readable analysis and structured JSON output.
You can infer reasonable actions from context (mark them as inferred=true).
You detect recurring patterns in events and todos.
Always respond with valid JSON matching the provided schema."""

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class AIBackend(ABC):
    """One generative AI provider."""

    name: str = "base"

    @abstractmethod
    async def extract(self, prompt: str, schema: dict[str, Any]) -> dict[str, Any]:
        """Return the JSON object produced for prompt, conforming to schema."""

    def parse_json_object(self, text: str | None, find_object: bool = False) -> dict[str, Any]:
        """
        Parse model output into a dict.

        With find_object, the outermost {...} span is taken first so prose or
        code fences around the JSON are ignored.
        """
        if not text or not text.strip():
            raise ExtractionError(f"Empty response from {self.name}", provider=self.name)

        if find_object:
            match = _JSON_OBJECT.search(text)
            if match:
                text = match.group(0)

        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            logger.error("AI response is not valid JSON", provider=self.name, raw=text[:200], error=str(e))
            raise ExtractionError(f"{self.name} returned invalid JSON", provider=self.name) from e

        if not isinstance(parsed, dict):
            raise ExtractionError(
                f"{self.name} returned {type(parsed).__name__}, expected object", provider=self.name
            )
        return parsed
