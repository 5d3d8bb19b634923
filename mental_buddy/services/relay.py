"""Message relay to the generative-language model.

Single-turn bridge: one user prompt in, one reply string out. The persona
instruction and the provider credential stay server-side.
"""
import logging
from typing import Any, Optional, Tuple

from openai import APIConnectionError, APIStatusError, AsyncOpenAI

from mental_buddy.config import settings
from mental_buddy.core.errors import (
    InvalidInputError,
    ProviderError,
    RelayInternalError,
    RelayTransportError,
)

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are Mental Buddy. Act as a compassionate psychologist with expertise "
    "in human behavior, emotions, biology, and social influences. Respond with "
    "honesty and clarity, gently guiding the user if their understanding seems "
    "inaccurate, using evidence-based insights from psychology and related "
    "fields. Ask open-ended questions to understand their problem, encourage "
    "them to express their emotions in a safe, non-judgmental way, and offer "
    "practical, tailored solutions. Explain complex ideas in simple, relatable "
    "terms for curious non-experts who love learning. Consider cultural and "
    "social factors when relevant."
)

MESSAGE_REQUIRED = "Message is required"
KEY_MISSING = "API key not configured"
PROVIDER_FAILED = "Language model request failed"
UNREACHABLE = "Could not reach the language model"
PARSE_FAILED = "Failed to parse language model response"


def _provider_error(body: Any) -> Tuple[Optional[str], Optional[int]]:
    """
    Pull message and code out of a provider error body.

    Accepts {"error": {...}}, the bare inner object, or a list wrapping
    either (the OpenAI-compatible endpoint sometimes answers with a list).
    """
    if isinstance(body, list) and body:
        body = body[0]
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        body = body["error"]
    if not isinstance(body, dict):
        return None, None

    message = body.get("message")
    code = body.get("code")
    if not isinstance(message, str) or not message.strip():
        message = None
    if isinstance(code, bool) or not isinstance(code, int) or not 400 <= code <= 599:
        code = None
    return message, code


def _first_text(completion: Any) -> Any:
    """First candidate's text, or None when the shape is unexpected."""
    try:
        return completion.choices[0].message.content
    except (AttributeError, IndexError, KeyError, TypeError):
        return None


class MessageRelay:
    """
    Forwards one prompt to the model and returns its reply.

    Raises tagged RelayError subclasses (or InvalidInputError) whose
    status_code mirrors the failure class; never returns an empty result
    for a provider failure.
    """

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        *,
        model: Optional[str] = None,
        system_instruction: str = SYSTEM_INSTRUCTION,
    ):
        if client is None and settings.GEMINI_API_KEY:
            client = AsyncOpenAI(
                api_key=settings.GEMINI_API_KEY,
                base_url=settings.LLM_BASE_URL,
                timeout=settings.LLM_TIMEOUT,
                max_retries=settings.LLM_MAX_RETRIES,
            )
        self.client = client
        self.model = model or settings.LLM_MODEL
        self.system_instruction = system_instruction

    def build_messages(self, prompt: str) -> list[dict[str, str]]:
        """Persona instruction plus the prompt as the only conversational turn."""
        return [
            {"role": "system", "content": self.system_instruction},
            {"role": "user", "content": prompt},
        ]

    async def reply(self, message: Any) -> str:
        """
        Get the model's reply to a single prompt.

        Args:
            message: User prompt; must be a non-blank string

        Returns:
            Reply text as returned by the provider

        Raises:
            InvalidInputError: 400 if the prompt is missing or blank
            RelayInternalError: 500 if no credential is configured or the
                reply has no text
            ProviderError: provider's code (or HTTP status) with its message
            RelayTransportError: 500 if the provider cannot be reached
        """
        prompt = message.strip() if isinstance(message, str) else ""
        if not prompt:
            raise InvalidInputError(MESSAGE_REQUIRED)
        if self.client is None:
            raise RelayInternalError(KEY_MISSING)

        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=self.build_messages(prompt),
                response_format={"type": "text"},
            )
        except APIStatusError as e:
            provider_message, provider_code = _provider_error(e.body)
            status = provider_code or e.status_code
            logger.error(f"Language model error: status={status}, body={e.body}")
            raise ProviderError(provider_message or PROVIDER_FAILED, status_code=status) from e
        except APIConnectionError as e:
            logger.error(f"Language model unreachable: {str(e)}")
            raise RelayTransportError(UNREACHABLE) from e

        text = _first_text(completion)
        if not isinstance(text, str):
            logger.error(f"Unexpected language model response: {completion!r}")
            raise RelayInternalError(PARSE_FAILED)
        return text
