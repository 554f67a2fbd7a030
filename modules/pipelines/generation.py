"""Hosted image generation service (Gemini via google-genai)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from google import genai
from google.genai import types

from config.settings import AppConfig
from modules.optimization.prompt_assembler import GenerationRequest

logger = logging.getLogger(__name__)

CREDENTIAL_ERROR_SIGNATURE = "Requested entity was not found"


class GenerationError(RuntimeError):
    """Raised when the hosted model does not return an image."""


@dataclass(slots=True)
class ImageResult:
    """Single image produced by the generation service."""

    image: bytes
    mime_type: str
    prompt: str


def is_credential_error(message: Optional[str]) -> bool:
    """Return True when an error message means the API key was rejected."""
    return bool(message) and CREDENTIAL_ERROR_SIGNATURE in str(message)


class GenerationService:
    """Facade around the hosted multimodal image model."""

    def __init__(self, config: AppConfig, client: Any = None) -> None:
        self.config = config
        self._client = client
        self._api_key: Optional[str] = config.gemini_key

    @property
    def api_key(self) -> Optional[str]:
        return self._api_key

    def set_api_key(self, api_key: Optional[str]) -> None:
        """Swap the credential; the client is rebuilt on next use."""
        self._api_key = (api_key or "").strip() or None
        self._client = None

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise GenerationError("API Key not found")
        self._client = genai.Client(api_key=self._api_key)
        return self._client

    def _build_contents(self, request: GenerationRequest) -> List[types.Part]:
        parts = [
            types.Part.from_bytes(data=segment.data, mime_type=segment.mime_type)
            for segment in request.image_segments
        ]
        parts.append(types.Part.from_text(text=request.text_segment))
        return parts

    @staticmethod
    def _first_image(response: Any) -> Optional[types.Blob]:
        for candidate in getattr(response, "candidates", None) or []:
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                inline_data = getattr(part, "inline_data", None)
                if inline_data is not None and getattr(inline_data, "data", None):
                    return inline_data
        return None

    async def generate(
        self, request: GenerationRequest, prompt_label: Optional[str] = None
    ) -> ImageResult:
        """Send one request and return the first image in the response.

        Args:
            request: Ordered image segments plus one text segment.
            prompt_label: Text stored alongside the result; defaults to the
                request text.

        Raises:
            GenerationError: On a missing key, a failed call, or a response
                without image data. Provider messages are kept verbatim.
        """
        client = self._get_client()
        config = types.GenerateContentConfig(
            response_modalities=["IMAGE", "TEXT"],
            image_config=types.ImageConfig(
                aspect_ratio=request.aspect_ratio,
                image_size=request.image_size or self.config.image_size,
            ),
        )
        try:
            response = await client.aio.models.generate_content(
                model=self.config.image_model,
                contents=self._build_contents(request),
                config=config,
            )
        except GenerationError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning("Image generation call failed: %s", exc)
            raise GenerationError(str(exc)) from exc

        inline_data = self._first_image(response)
        if inline_data is None:
            raise GenerationError("No image data found in response.")
        return ImageResult(
            image=inline_data.data,
            mime_type=inline_data.mime_type or "image/png",
            prompt=prompt_label if prompt_label is not None else request.text_segment,
        )

    async def generate_text(self, prompt: str, system_instruction: Optional[str] = None) -> str:
        """Plain text completion with the prompt model."""
        client = self._get_client()
        config = types.GenerateContentConfig(system_instruction=system_instruction)
        try:
            response = await client.aio.models.generate_content(
                model=self.config.prompt_model,
                contents=prompt,
                config=config,
            )
        except Exception as exc:  # noqa: BLE001
            raise GenerationError(str(exc)) from exc
        text = (getattr(response, "text", None) or "").strip()
        if not text:
            raise GenerationError("模型未返回任何文本。")
        return text
