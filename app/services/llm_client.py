"""Generative-text model client backed by OpenAI Chat Completions."""

import logging
from typing import Optional

import openai
from openai import OpenAI

from app.config import settings
from app.exceptions import UpstreamCallException

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are an educational assistant. Follow the output format exactly "
    "and return only what is asked."
)


class LLMClient:
    """Single request/response text completion against one model."""

    def __init__(
        self,
        model: str,
        openai_client: Optional[OpenAI] = None,
        timeout: Optional[float] = None,
        temperature: float = 0.4,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ):
        """
        Initialize model client.

        Args:
            model: OpenAI model name
            openai_client: OpenAI client instance (creates new one if not provided)
            timeout: Default per-call timeout in seconds
            temperature: Sampling temperature
            system_prompt: System message sent with every call
        """
        self.client = openai_client or OpenAI(api_key=settings.openai_api_key)
        self.model = model
        self.timeout = timeout if timeout is not None else settings.llm_timeout_sec
        self.temperature = temperature
        self.system_prompt = system_prompt

    def complete(
        self, prompt: str, max_tokens: int, timeout: Optional[float] = None
    ) -> str:
        """
        Send one prompt and return the response text.

        Args:
            prompt: User-turn prompt
            max_tokens: Maximum tokens in the response
            timeout: Per-call timeout in seconds (defaults to the client's)

        Returns:
            Raw response text

        Raises:
            UpstreamCallException: On network, auth, rate-limit, timeout or
                status errors, or when the model returns no text
        """
        call_timeout = timeout if timeout is not None else self.timeout
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.system_prompt},
                    {"role": "user", "content": prompt},
                ],
                temperature=self.temperature,
                max_tokens=max_tokens,
                timeout=call_timeout,
            )
        except openai.APITimeoutError as e:
            raise UpstreamCallException(
                f"Model call timed out after {call_timeout}s",
                details={"model": self.model, "reason": "timeout"},
            ) from e
        except openai.APIStatusError as e:
            raise UpstreamCallException(
                f"Model call failed with status {e.status_code}: {e.message}",
                details={
                    "model": self.model,
                    "reason": "status",
                    "status_code": e.status_code,
                },
            ) from e
        except openai.OpenAIError as e:
            raise UpstreamCallException(
                f"Model call failed: {str(e)}",
                details={"model": self.model, "reason": type(e).__name__},
            ) from e

        text = response.choices[0].message.content if response.choices else None
        if not text or not text.strip():
            raise UpstreamCallException(
                "Model returned an empty response",
                details={"model": self.model, "reason": "empty"},
            )

        tokens = response.usage.total_tokens if response.usage else 0
        logger.debug(f"Model {self.model} responded with {len(text)} chars, {tokens} tokens")
        return text
