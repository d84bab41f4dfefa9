"""
Gemini Image Generation Gateway

Single-attempt proxy to the Gemini image model. Takes data-URL images plus a
prompt and returns the first generated image as a data URL, or raises a
typed GenerationError:

- GenerationBlockedError: the prompt was blocked by safety filters
- GenerationStoppedError: the model stopped with a non-STOP finish reason
- NoImageReturnedError: the model finished without image output
- GatewayTimeoutError: the call did not finish within the timeout
- GatewayNotConfiguredError: GEMINI_API_KEY is not set

No retries. The gateway never touches the credit ledger.
"""

import asyncio
import base64
import binascii
import logging
import re
from typing import Any, List, Optional

from google import genai
from google.genai import types

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash-image"

_data_url_re = re.compile(r"^data:(?P<mime>[^;,]+);base64,(?P<data>.+)$", re.DOTALL)


class InvalidImageError(ValueError):
    """The request carried an image that is not a base64 data URL."""


class GenerationError(Exception):
    """Image generation failed upstream."""


class GatewayNotConfiguredError(GenerationError):
    def __init__(self):
        super().__init__("GEMINI_API_KEY not configured")


class GatewayTimeoutError(GenerationError):
    pass


class GenerationBlockedError(GenerationError):
    pass


class GenerationStoppedError(GenerationError):
    pass


class NoImageReturnedError(GenerationError):
    pass


def _enum_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "value", value))


def data_url_to_part(data_url: Optional[str]) -> types.Part:
    """Convert 'data:<mime>;base64,<data>' into an inline image part."""
    match = _data_url_re.match(data_url or "")
    if not match:
        raise InvalidImageError("Invalid data URL")
    try:
        data = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError):
        raise InvalidImageError("Could not decode base64 image data")
    return types.Part.from_bytes(data=data, mime_type=match.group("mime"))


def extract_image_data_url(response: Any) -> str:
    """
    Return the first inline image in a generate_content response as a data URL.

    Raises a GenerationError subclass describing why there is no image.
    """
    prompt_feedback = getattr(response, "prompt_feedback", None)
    block_reason = _enum_value(getattr(prompt_feedback, "block_reason", None))
    if block_reason:
        block_message = getattr(prompt_feedback, "block_reason_message", None) or ""
        raise GenerationBlockedError(f"Request was blocked. Reason: {block_reason}. {block_message}".strip())

    candidates = getattr(response, "candidates", None) or []
    for candidate in candidates:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            inline_data = getattr(part, "inline_data", None)
            data = getattr(inline_data, "data", None)
            if not data:
                continue
            if isinstance(data, (bytes, bytearray)):
                data = base64.b64encode(bytes(data)).decode("ascii")
            mime_type = getattr(inline_data, "mime_type", None) or "image/png"
            return f"data:{mime_type};base64,{data}"

    finish_reason = _enum_value(getattr(candidates[0], "finish_reason", None)) if candidates else None
    if finish_reason and finish_reason != "STOP":
        raise GenerationStoppedError(
            f"Image generation stopped unexpectedly. Reason: {finish_reason}. "
            "This often relates to safety settings."
        )

    text_feedback = _response_text(response, candidates)
    message = "The AI model did not return an image. "
    if text_feedback:
        message += f'The model responded with text: "{text_feedback}"'
    else:
        message += ("This can happen due to safety filters or if the request is too complex. "
                    "Please try a different image.")
    raise NoImageReturnedError(message)


def _response_text(response: Any, candidates: List[Any]) -> str:
    texts = []
    for candidate in candidates:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            text = getattr(part, "text", None)
            if text:
                texts.append(text)
    if not texts:
        text = getattr(response, "text", None)
        if isinstance(text, str):
            texts.append(text)
    return "".join(texts).strip()


class GeminiImageGateway:
    """Lazily-constructed google-genai client for image generation."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        timeout_seconds: float = 120
    ):
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._client = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> genai.Client:
        if not self.configured:
            raise GatewayNotConfiguredError()
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def generate(self, images: List[types.Part], prompt: str) -> str:
        """
        Send image parts and a prompt; return the generated image as a data URL.

        Args:
            images: parts built with data_url_to_part()
            prompt: instruction text supplied by the client
        """
        client = self._get_client()
        contents = [*images, types.Part.from_text(text=prompt)]

        try:
            response = await asyncio.wait_for(
                client.aio.models.generate_content(
                    model=self.model,
                    contents=contents,
                    config=types.GenerateContentConfig(response_modalities=["IMAGE"]),
                ),
                timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            raise GatewayTimeoutError(f"Image generation timed out after {self.timeout_seconds} seconds")
        except GenerationError:
            raise
        except Exception as e:
            logger.error(f"Gemini API error: {e}")
            raise GenerationError(str(e)) from e

        return extract_image_data_url(response)
