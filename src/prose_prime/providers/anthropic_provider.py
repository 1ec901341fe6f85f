import anthropic
from loguru import logger
from tenacity import retry

from prose_prime.errors import GenerationError
from prose_prime.providers.common import client_timeout, default_retry_kwargs


class AnthropicProvider:
    def __init__(self, api_key: str, *, timeout_seconds: float = 30.0):
        self._client = anthropic.AsyncAnthropic(
            api_key=api_key,
            timeout=client_timeout(timeout_seconds),
            max_retries=0,
        )

    @retry(**default_retry_kwargs((
        anthropic.RateLimitError,
        anthropic.APIConnectionError,
        anthropic.APITimeoutError,
    )))
    async def complete_json(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str,
        user_prompt: str,
    ) -> str:
        logger.debug(f"API request: model={model}, max_tokens={max_tokens}, prompt_chars={len(user_prompt)}")
        response = await self._client.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )
        usage = response.usage
        logger.debug(
            f"API response: stop_reason={response.stop_reason}, "
            f"input_tokens={usage.input_tokens}, output_tokens={usage.output_tokens}"
        )

        text = "".join(block.text for block in response.content if block.type == "text")
        if not text.strip():
            raise GenerationError("Anthropic returned an empty response")
        if response.stop_reason == "max_tokens":
            logger.warning(f"Response truncated at max_tokens ({max_tokens}); JSON may be incomplete")
        return text
