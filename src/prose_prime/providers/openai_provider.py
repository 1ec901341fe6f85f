import openai
from loguru import logger
from tenacity import retry

from prose_prime.errors import GenerationError
from prose_prime.providers.common import client_timeout, default_retry_kwargs


class OpenAIProvider:
    def __init__(self, api_key: str, *, timeout_seconds: float = 30.0):
        self._client = openai.AsyncOpenAI(
            api_key=api_key,
            timeout=client_timeout(timeout_seconds),
            max_retries=0,
        )

    @retry(**default_retry_kwargs((
        openai.RateLimitError,
        openai.APIConnectionError,
        openai.APITimeoutError,
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
        response = await self._client.chat.completions.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            response_format={"type": "json_object"},
        )
        if not response.choices:
            raise GenerationError("OpenAI returned no choices")

        choice = response.choices[0]
        text = choice.message.content or ""
        logger.debug(f"API response: finish_reason={choice.finish_reason}, len={len(text)}")
        if not text.strip():
            raise GenerationError("OpenAI returned an empty response")
        return text
