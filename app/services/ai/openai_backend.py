"""
OpenAI extraction backend.

Uses structured outputs (json_schema, strict) so the model is held to the
extraction schema. Transient failures are retried with exponential backoff.
"""

import asyncio
from typing import Any

import openai
from openai import AsyncOpenAI

from app.config import settings
from app.features.inbox_actions.errors import AIBackendError
from app.infrastructure.observability.logging import get_logger
from app.services.ai.base import SYSTEM_PROMPT, AIBackend

logger = get_logger(__name__)


class OpenAIBackend(AIBackend):
    name = "openai"

    def __init__(self, client: AsyncOpenAI | None = None, max_retries: int | None = None):
        self.client = client
        self.max_retries = max_retries or settings.AI_MAX_RETRIES

    def _get_client(self) -> AsyncOpenAI:
        if self.client is None:
            if not settings.OPENAI_API_KEY:
                raise AIBackendError("OPENAI_API_KEY not configured", provider=self.name, recoverable=False)

            # Retries are handled here, not by the SDK
            self.client = AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY,
                timeout=settings.AI_TIMEOUT_SECONDS,
                max_retries=0,
            )
            logger.info("OpenAI client initialized", model=settings.OPENAI_MODEL)
        return self.client

    async def extract(self, prompt: str, schema: dict[str, Any]) -> dict[str, Any]:
        content = await self._call_with_retry(prompt, schema)
        return self.parse_json_object(content)

    async def _call_with_retry(self, prompt: str, schema: dict[str, Any]) -> str:
        client = self._get_client()
        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            try:
                response = await client.chat.completions.create(
                    model=settings.OPENAI_MODEL,
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": prompt},
                    ],
                    max_tokens=settings.OPENAI_MAX_TOKENS,
                    temperature=settings.OPENAI_TEMPERATURE,
                    response_format={
                        "type": "json_schema",
                        "json_schema": {
                            "name": "event_todo_extraction",
                            "strict": True,
                            "schema": schema,
                        },
                    },
                )

                if not response.choices or not response.choices[0].message.content:
                    raise AIBackendError("Empty response from OpenAI API", provider=self.name)

                content = response.choices[0].message.content.strip()
                logger.info(
                    "OpenAI API call successful",
                    attempt=attempt + 1,
                    response_length=len(content),
                    usage_tokens=response.usage.total_tokens if response.usage else 0,
                )
                return content

            except openai.RateLimitError as e:
                last_error = e
                wait_time = min(2**attempt, 30)
                logger.warning(
                    "OpenAI rate limit hit, retrying", attempt=attempt + 1, wait_time=wait_time, error=str(e)
                )
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(wait_time)

            except (openai.APITimeoutError, openai.APIConnectionError) as e:
                last_error = e
                logger.warning("OpenAI API unreachable, retrying", attempt=attempt + 1, error=str(e))

            except openai.APIStatusError as e:
                last_error = e
                # Client errors will not succeed on retry
                if 400 <= e.status_code < 500:
                    logger.error("OpenAI client error (not retrying)", status_code=e.status_code, error=str(e))
                    break
                logger.warning("OpenAI API error, retrying", attempt=attempt + 1, error=str(e))

            except AIBackendError as e:
                last_error = e
                logger.warning("OpenAI returned no content, retrying", attempt=attempt + 1)

        logger.error(
            "OpenAI API call failed after all retries",
            max_retries=self.max_retries,
            final_error=str(last_error),
        )
        raise AIBackendError(
            f"OpenAI API failed after {self.max_retries} attempts: {last_error}", provider=self.name
        ) from last_error
