from .openai_provider import OpenAIProvider


class OpenRouterProvider(OpenAIProvider):
    """
    Provider implementation for the OpenRouter API.

    Same chat-completion call as OpenAIProvider, routed through OpenRouter.
    The configured HTTP-Referer and X-Title headers identify the calling
    application.
    """

    provider_kind = "openrouter"
    litellm_prefix = "openrouter"
