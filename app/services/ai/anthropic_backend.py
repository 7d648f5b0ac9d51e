"""
Anthropic extraction backend.

Messages API has no schema-enforced output here, so the schema is appended to
the prompt and the JSON object is pulled out of the text reply.
"""

import asyncio
import json
from typing import Any

import anthropic
from anthropic import AsyncAnthropic

from app.config import settings
from app.features.inbox_actions.errors import AIBackendError
from app.infrastructure.observability.logging import get_logger
from app.services.ai.base import SYSTEM_PROMPT, AIBackend

logger = get_logger(__name__)


class AnthropicBackend(AIBackend):
    name = "anthropic"

    def __init__(self, client: AsyncAnthropic | None = None, max_retries: int | None = None):
        self.client = client
        self.max_retries = max_retries or settings.AI_MAX_RETRIES

    def _get_client(self) -> AsyncAnthropic:
        if self.client is None:
            if not settings.ANTHROPIC_API_KEY:
                raise AIBackendError("ANTHROPIC_API_KEY not configured", provider=self.name, recoverable=False)

            self.client = AsyncAnthropic(
                api_key=settings.ANTHROPIC_API_KEY,
                timeout=settings.AI_TIMEOUT_SECONDS,
                max_retries=0,
            )
            logger.info("Anthropic client initialized", model=settings.ANTHROPIC_MODEL)
        return self.client

    async def extract(self, prompt: str, schema: dict[str, Any]) -> dict[str, Any]:
        full_prompt = (
            f"{prompt}\n\nRespond with a single JSON object matching this JSON schema:\n"
            f"{json.dumps(schema)}"
        )
        text = await self._call_with_retry(full_prompt)
        return self.parse_json_object(text, find_object=True)

    async def _call_with_retry(self, prompt: str) -> str:
        client = self._get_client()
        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            try:
                response = await client.messages.create(
                    model=settings.ANTHROPIC_MODEL,
                    max_tokens=settings.ANTHROPIC_MAX_TOKENS,
                    temperature=settings.OPENAI_TEMPERATURE,
                    system=SYSTEM_PROMPT.replace("the provided schema", "the schema provided in the user message"),
                    messages=[{"role": "user", "content": prompt}],
                )

                text = "".join(block.text for block in response.content if block.type == "text")
                if not text:
                    raise AIBackendError("Unexpected response type from Anthropic", provider=self.name)

                logger.info(
                    "Anthropic API call successful",
                    attempt=attempt + 1,
                    response_length=len(text),
                    output_tokens=response.usage.output_tokens if response.usage else 0,
                )
                return text

            except anthropic.RateLimitError as e:
                last_error = e
                wait_time = min(2**attempt, 30)
                logger.warning(
                    "Anthropic rate limit hit, retrying", attempt=attempt + 1, wait_time=wait_time, error=str(e)
                )
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(wait_time)

            except (anthropic.APITimeoutError, anthropic.APIConnectionError) as e:
                last_error = e
                logger.warning("Anthropic API unreachable, retrying", attempt=attempt + 1, error=str(e))

            except anthropic.APIStatusError as e:
                last_error = e
                if 400 <= e.status_code < 500:
                    logger.error(
                        "Anthropic client error (not retrying)", status_code=e.status_code, error=str(e)
                    )
                    break
                logger.warning("Anthropic API error, retrying", attempt=attempt + 1, error=str(e))

            except AIBackendError as e:
                last_error = e
                logger.warning("Anthropic returned no text, retrying", attempt=attempt + 1)

        logger.error(
            "Anthropic API call failed after all retries",
            max_retries=self.max_retries,
            final_error=str(last_error),
        )
        raise AIBackendError(
            f"Anthropic API failed after {self.max_retries} attempts: {last_error}", provider=self.name
        ) from last_error
