"""Background removal through the Replicate predictions API."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from modules.utils.image_utils import to_data_uri

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.replicate.com/v1"
DEFAULT_MODEL_VERSION = "a029dff38972b5fda4ec5d75d7d1cd25aeff621d2cf4946a41055d7db66b80bc"


class BackgroundRemovalError(RuntimeError):
    """Raised when a removal job cannot be started or does not succeed."""


class PredictionStatus(str, Enum):
    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (PredictionStatus.SUCCEEDED, PredictionStatus.FAILED, PredictionStatus.CANCELED)


@dataclass(slots=True)
class Prediction:
    """Snapshot of a remote removal job."""

    id: str
    status: PredictionStatus
    output: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Prediction":
        output = payload.get("output")
        if isinstance(output, list):
            output = output[0] if output else None
        raw_status = payload.get("status", "starting")
        try:
            status = PredictionStatus(raw_status)
        except ValueError as exc:
            raise BackgroundRemovalError(f"Unknown prediction status: {raw_status}") from exc
        return cls(
            id=str(payload.get("id", "")),
            status=status,
            output=output,
            error=payload.get("error"),
        )


class BackgroundRemovalClient:
    """Start, poll and collect background-removal predictions."""

    def __init__(
        self,
        api_token: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        model_version: str = DEFAULT_MODEL_VERSION,
        poll_interval: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_token = api_token
        self.base_url = base_url.rstrip("/")
        self.model_version = model_version
        self.poll_interval = poll_interval
        self._http_client = http_client

    def _headers(self) -> Dict[str, str]:
        if not self.api_token:
            raise BackgroundRemovalError("API Key is required")
        return {
            "Authorization": f"Token {self.api_token}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        headers = self._headers()
        url = f"{self.base_url}{path}"
        if self._http_client is not None:
            response = await self._http_client.request(method, url, headers=headers, **kwargs)
        else:
            async with httpx.AsyncClient(timeout=60.0) as client:
                response = await client.request(method, url, headers=headers, **kwargs)

        if response.is_error:
            try:
                payload = response.json()
                detail = payload.get("detail") or payload.get("error") or response.text
            except ValueError:
                detail = response.text
            raise BackgroundRemovalError(f"Replicate 请求失败（{response.status_code}）：{detail}")
        return response.json()

    async def start(self, image: str | bytes) -> Prediction:
        """Submit an image (URL, data URI or raw bytes) and return the new job."""
        image_url = to_data_uri(image) if isinstance(image, bytes) else image
        payload = {
            "version": self.model_version,
            "input": {"image": image_url, "format": "png", "background_type": "rgba"},
        }
        data = await self._request("POST", "/predictions", json=payload)
        return Prediction.from_payload(data)

    async def check(self, prediction_id: str) -> Prediction:
        if not prediction_id:
            raise BackgroundRemovalError("Prediction ID is required for check action")
        data = await self._request("GET", f"/predictions/{prediction_id}")
        return Prediction.from_payload(data)

    async def remove_background(self, image: str | bytes) -> str:
        """Run a job to completion and return the output image URL."""
        prediction = await self.start(image)
        logger.info("Started background removal %s", prediction.id)
        while not prediction.status.is_terminal:
            await asyncio.sleep(self.poll_interval)
            prediction = await self.check(prediction.id)

        if prediction.status is not PredictionStatus.SUCCEEDED:
            raise BackgroundRemovalError(prediction.error or "Prediction failed or was canceled")
        if not prediction.output:
            raise BackgroundRemovalError("Prediction succeeded without an output image")
        return prediction.output
