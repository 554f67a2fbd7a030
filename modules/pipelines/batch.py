"""Fan-out of one generation request into N parallel variations."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from modules.optimization.prompt_assembler import GenerationRequest, with_variation
from modules.pipelines.concurrency import ConcurrencyGate
from modules.pipelines.generation import GenerationService, ImageResult, is_credential_error
from modules.services.history_service import HistoryItem
from modules.services.persistence import PersistenceAdapter
from modules.utils.image_utils import to_data_uri

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 4
CREDENTIAL_INVALID_MESSAGE = "API 密钥无效或已过期。"


@dataclass(slots=True)
class BatchSuccess:
    """One generated image; ``url`` is a data URI when the upload failed."""

    image: bytes
    prompt: str
    url: str
    persisted: bool = False
    record: Optional[HistoryItem] = None


@dataclass(slots=True)
class BatchOutcome:
    successes: List[BatchSuccess] = field(default_factory=list)
    failure_count: int = 0
    first_error: Optional[str] = None
    credential_invalid: bool = False

    @property
    def total(self) -> int:
        return len(self.successes) + self.failure_count


def describe_outcome(outcome: BatchOutcome) -> Optional[str]:
    """Return the user-facing error text for a batch, or None when all succeeded."""
    if outcome.credential_invalid:
        return CREDENTIAL_INVALID_MESSAGE
    if outcome.failure_count:
        if not outcome.successes:
            return f"生成失败：{outcome.first_error}"
        return f"部分生成失败：{outcome.first_error}"
    return None


class BatchOrchestrator:
    """Dispatch a batch, wait for every settlement, then persist the successes."""

    def __init__(
        self,
        service: GenerationService,
        gate: ConcurrencyGate,
        persistence: Optional[PersistenceAdapter] = None,
    ) -> None:
        self.service = service
        self.gate = gate
        self.persistence = persistence

    async def _persist(
        self,
        result: ImageResult,
        *,
        mode: str,
        section: str,
        project_id: Optional[str],
        user_id: Optional[str],
    ) -> BatchSuccess:
        fallback_url = to_data_uri(result.image, result.mime_type)
        if self.persistence is None:
            return BatchSuccess(image=result.image, prompt=result.prompt, url=fallback_url)

        url = await self.persistence.upload(result.image, user_id)
        if url is None:
            return BatchSuccess(image=result.image, prompt=result.prompt, url=fallback_url)

        record = await self.persistence.record_metadata(
            url, result.prompt, mode, section, project_id, user_id
        )
        return BatchSuccess(
            image=result.image, prompt=result.prompt, url=url, persisted=True, record=record
        )

    async def run(
        self,
        template: GenerationRequest,
        batch_size: int,
        *,
        prompt_label: str,
        mode: str,
        section: str,
        project_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> BatchOutcome:
        """Generate ``batch_size`` variations of ``template``.

        All requests are dispatched at once and awaited to settlement. A
        failure does not cancel its siblings and nothing is retried.
        """
        if not 1 <= batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"生成数量必须在 1 到 {MAX_BATCH_SIZE} 之间")

        outcome = BatchOutcome()
        async with self.gate.track():
            settled = await asyncio.gather(
                *(
                    self.service.generate(
                        with_variation(template, index, batch_size), prompt_label
                    )
                    for index in range(batch_size)
                ),
                return_exceptions=True,
            )

            for result in settled:
                if isinstance(result, BaseException):
                    outcome.failure_count += 1
                    if outcome.first_error is None:
                        outcome.first_error = str(result) or result.__class__.__name__
                    logger.warning("Batch request failed: %s", result)
                    continue
                outcome.successes.append(
                    await self._persist(
                        result,
                        mode=mode,
                        section=section,
                        project_id=project_id,
                        user_id=user_id,
                    )
                )

        outcome.credential_invalid = is_credential_error(outcome.first_error)
        logger.info(
            "Batch finished: %d succeeded, %d failed", len(outcome.successes), outcome.failure_count
        )
        return outcome
