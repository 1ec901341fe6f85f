from typing import Protocol, runtime_checkable


@runtime_checkable
class CoachProvider(Protocol):
    async def complete_json(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str,
        user_prompt: str,
    ) -> str:
        """Ask the model for a single JSON object and return its raw text.

        Raises GenerationError when the provider answers but the answer is
        unusable; SDK errors that survive retries propagate as-is.
        """
        ...


def create_provider(provider_name: str, api_key: str, *, timeout_seconds: float = 30.0) -> CoachProvider:
    """Factory: create a CoachProvider by name."""
    name = provider_name.strip().lower()
    if name == "anthropic":
        from prose_prime.providers.anthropic_provider import AnthropicProvider
        return AnthropicProvider(api_key, timeout_seconds=timeout_seconds)
    if name == "openai":
        from prose_prime.providers.openai_provider import OpenAIProvider
        return OpenAIProvider(api_key, timeout_seconds=timeout_seconds)
    raise ValueError(f"Unknown provider: {provider_name!r}. Supported: 'anthropic', 'openai'")
