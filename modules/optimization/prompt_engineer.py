"""Prompt enhancement through the hosted text model."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from modules.optimization.prompt_assembler import GenerationAttributes
from modules.pipelines.generation import GenerationService

logger = logging.getLogger(__name__)

FRAMING_OPTIONS: Dict[str, str] = {
    "CLOSE_UP": (
        "Extreme Close-up shot, focusing on facial expressions and eyes, cutting off at the "
        "neck/shoulders."
    ),
    "MEDIUM": (
        "Medium Shot (Mid-shot), capturing the subject from the waist up, focusing on body "
        "language and expression."
    ),
    "AMERICAN": (
        "American Shot (Cowboy Shot), capturing the subject from the knees up, including hand "
        "gestures and posture."
    ),
}

BASE_STRING = (
    "Create an 8K ultra-realistic cinematic action portrait, format 1080x1440, perfectly "
    "replicating the subject's physical traits, facial expression, and overall look from the "
    "reference image"
)

SYSTEM_INSTRUCTION = f"""
You are an expert prompt engineer for photorealistic image models. Complete the structure
below to produce a single high-conversion image prompt.

GOLDEN RULE (FIDELITY): the prompt must start EXACTLY with:
"{BASE_STRING}"

REQUIRED STRUCTURE:
[NICHE CONTEXT]: if a subject description is given use it for clothing and pose, otherwise
derive clothing and action from the niche. For an American shot describe the hands.
[LIGHTING SETUP]: start with "Cinematic lighting setup, volumetric lighting, dramatic shadows
on face to create volume." Add the rim and complementary colors when requested.
[BACKGROUND]: use the given environment, or invent one from the niche. With blur enabled the
background must be abstract with heavy bokeh; otherwise it stays detailed and realistic.
[FLOATING ELEMENTS]: only when enabled.
[FRAMING]: use the framing description verbatim.

Return only the final prompt text in English, without headings, markdown or explanations.
"""


@dataclass(slots=True)
class EnhanceRequest:
    """Inputs collected by the prompt enhancement form."""

    niche: str
    environment: str = ""
    subject_description: str = ""
    framing: str = "MEDIUM"
    rim_color: Optional[str] = None
    complementary_color: Optional[str] = None
    use_floating_elements: bool = False
    floating_elements_prompt: str = ""
    subject_count: int = 0
    reference_count: int = 0
    environment_reference_count: int = 0
    attributes: GenerationAttributes = field(default_factory=GenerationAttributes)


def _yes_no(flag: bool) -> str:
    return "YES" if flag else "NO"


def build_user_message(request: EnhanceRequest) -> str:
    framing = FRAMING_OPTIONS.get(request.framing, "Standard portrait framing")
    attributes = request.attributes
    lines = [
        "USER INPUTS:",
        f"- Niche: {request.niche}",
        f"- Subject description: {request.subject_description or 'Not specified (use the visual reference or niche)'}",
        f"- Environment: {request.environment or 'Not specified (invent from the niche)'}",
        f"- Use environment references: {_yes_no(request.environment_reference_count > 0)}",
        "",
        "COLORS:",
        f"- Rim light color: {request.rim_color or 'AUTO'}",
        f"- Complementary color: {request.complementary_color or 'AUTO'}",
        "",
        "VISUAL ATTRIBUTES:",
        f"- Use gradient: {_yes_no(attributes.use_gradient)}",
        f"- Use blur: {_yes_no(attributes.use_blur)}",
        f"- Framing: {framing}",
        f"- Use floating elements: {_yes_no(request.use_floating_elements)}",
        f"- Floating elements: {request.floating_elements_prompt or 'Not specified (invent if YES)'}",
        f"- Subject images provided: {request.subject_count}",
        f"- Style references provided: {request.reference_count}",
        "",
        "Write the final prompt following the structure strictly.",
    ]
    return "\n".join(lines)


def fallback_prompt(request: EnhanceRequest) -> str:
    """Deterministic prompt used when the model call fails."""
    subject = f" ({request.subject_description})" if request.subject_description else ""
    background = (
        "Abstract textured background"
        if request.attributes.use_blur
        else "Detailed realistic background"
    )
    return (
        f"{BASE_STRING}. Subject: Professional {request.niche}{subject}. "
        f"Setting: {request.environment or 'Abstract Professional background'}. "
        f"Lighting: Cinematic lighting. Background: {background}."
    )


def _strip_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.splitlines()[1:]
        if lines and lines[-1].startswith("```"):
            lines = lines[:-1]
        cleaned = "\n".join(lines).strip()
    return cleaned


@dataclass(slots=True)
class EnhanceResult:
    """Prompt text plus the reason the fallback was used, if it was."""

    prompt: str
    fallback_reason: Optional[str] = None

    @property
    def used_fallback(self) -> bool:
        return self.fallback_reason is not None


class PromptEngineer:
    """Expand short user inputs into a full image prompt."""

    def __init__(self, service: GenerationService) -> None:
        self.service = service

    async def enhance(self, request: EnhanceRequest) -> EnhanceResult:
        """Return the model's prompt, or the fallback prompt on any failure."""
        try:
            reply = await self.service.generate_text(build_user_message(request), SYSTEM_INSTRUCTION)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Prompt enhancement failed, using fallback: %s", exc)
            return EnhanceResult(fallback_prompt(request), str(exc) or exc.__class__.__name__)
        cleaned = _strip_fences(reply)
        if not cleaned:
            return EnhanceResult(fallback_prompt(request), "empty reply")
        return EnhanceResult(cleaned)
