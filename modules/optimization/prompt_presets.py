"""Generation modes and the fixed clause tables used to build prompts."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict


class GeneratorMode(str, Enum):
    """Supported generation modes."""

    HUMAN = "HUMAN"
    OBJECT = "OBJECT"
    ENHANCE = "ENHANCE"
    INFOPRODUCT = "INFOPRODUCT"


class SubjectPosition(str, Enum):
    """Horizontal placement of the subject."""

    LEFT = "LEFT"
    CENTER = "CENTER"
    RIGHT = "RIGHT"


class AppSection(str, Enum):
    """Top-level workspaces of the application."""

    LANDING_PAGES = "LANDING_PAGES"
    DESIGNS = "DESIGNS"
    REMOVE_BG = "REMOVE_BG"
    WEBP_CONVERTER = "WEBP_CONVERTER"


@dataclass(frozen=True, slots=True)
class ModeClauses:
    """Mode specific wording: subject fidelity rule and closing guideline.

    ``subject_fidelity`` is formatted with ``count`` (number of subject images).
    """

    subject_fidelity: str
    quality_guideline: str


MODE_CLAUSES: Dict[GeneratorMode, ModeClauses] = {
    GeneratorMode.HUMAN: ModeClauses(
        subject_fidelity=(
            "Subject: Use the person(s) in the first {count} images provided as the main subject. "
            "Maintain their facial features, physiognomy, and identity with 100% fidelity."
        ),
        quality_guideline=(
            "Create an 8K ultra-realistic cinematic action portrait, perfectly replicating the "
            "subject's physical traits, facial expression, and overall look from the reference image."
        ),
    ),
    GeneratorMode.OBJECT: ModeClauses(
        subject_fidelity=(
            "Subject: Use the object/product in the first {count} images provided as the main focal "
            "point. Maintain its geometry, brand details, labels, and material properties with 100% "
            "fidelity. Do not distort the product."
        ),
        quality_guideline=(
            "Create an 8K ultra-realistic product photography shot. CRITICAL: Perfectly replicate the "
            "object's geometry, materials, textures, labels, and lighting response. The object should "
            "look tangible and integrated into the environment with ray-traced lighting quality."
        ),
    ),
    GeneratorMode.ENHANCE: ModeClauses(
        subject_fidelity=(
            "BASE IMAGE: The first {count} images provided are the BASE CANVAS. Do not create a new "
            "composition from scratch. You must keep the layout of this image."
        ),
        quality_guideline=(
            "TASK: ENHANCE AND RICHEN THE ORIGINAL IMAGE. Redraw the image in 8K resolution, "
            "significantly improving texture quality, lighting realism, and color grading. Integrate "
            "any requested assets or style references seamlessly WITHOUT changing the underlying "
            "structure of the original image."
        ),
    ),
    GeneratorMode.INFOPRODUCT: ModeClauses(
        subject_fidelity=(
            "Subject (The Expert): Use the person provided. Analyze their face and identity. Keep the "
            "face 100% identical. However, YOU HAVE PERMISSION to upgrade their pose, body language, "
            "and clothing to appear more authoritative and professional if the original is too casual."
        ),
        quality_guideline=(
            "Create an 8K ultra-realistic cinematic action portrait of an authority figure, perfectly "
            "replicating the subject's face and overall look from the reference image, with premium "
            "editorial lighting suitable for an info-product launch."
        ),
    ),
}

# Every mode must have an entry; a missing one is a programming error.
assert set(MODE_CLAUSES) == set(GeneratorMode), "MODE_CLAUSES must cover every GeneratorMode"


POSITION_CLAUSES: Dict[SubjectPosition, str] = {
    SubjectPosition.LEFT: (
        "COMPOSITION RULE: Place the subject's center at 33% from the left edge of the frame. "
        "The subject must NOT touch the left edge and must NOT be placed in the pure center. "
        "NEGATIVE SPACE RULE: Keep the RIGHT side of the frame open for text."
    ),
    SubjectPosition.CENTER: (
        "COMPOSITION RULE: Position the subject strictly in the geometric center of the image "
        "(center at 50% from left). Balance the negative space equally on both sides and keep a "
        "clear margin from every edge."
    ),
    SubjectPosition.RIGHT: (
        "COMPOSITION RULE: Place the subject's center at 66% from the left edge of the frame. "
        "The subject must NOT touch the right edge and must NOT be placed in the pure center. "
        "NEGATIVE SPACE RULE: Keep the LEFT side of the frame open for text."
    ),
}

assert set(POSITION_CLAUSES) == set(SubjectPosition), "POSITION_CLAUSES must cover every position"


GRADIENT_CLAUSE = (
    "BLENDING ATTRIBUTE: Apply a soft, seamless GRADIENT FADE on the negative space side. The "
    "gradient should use the DOMINANT BACKGROUND COLOR to fade out any complex details, ensuring "
    "maximum text readability."
)

BLUR_CLAUSE = (
    "DEPTH ATTRIBUTE (RACK FOCUS): First, render the entire image with full sharp details. THEN, "
    "overlay a subtle GRADIENT BLUR (Rack Focus effect) that is heaviest on the negative space edge "
    "and gradually fades to 0% blur towards the center/subject. The subject must remain 100% sharp."
)

SHARP_CLAUSE = (
    "CLARITY ATTRIBUTE: Keep the background relatively detailed and sharp across the frame, using "
    "only natural optical depth of field."
)

REFERENCE_SYNTHESIS_HEADER = (
    "STYLE SYNTHESIS TASK: You have been provided with {count} style reference images."
)

REFERENCE_SYNTHESIS_INSTRUCTION = (
    "INSTRUCTION: Synthesize the best elements of these references according to the user "
    "requirements above (the 80/20 rule). Merge them into a cohesive, single composition. "
    "IMPORTANT: DO NOT reproduce any text, letters, or specific logos found in the reference images."
)

PALETTE_TEMPLATE = (
    "COLOR PALETTE: Primary/background dominant color: {primary}. Secondary lighting/depth "
    "color: {secondary}. Accent color for details and overlays: {accent}."
)

MAIN_COLOR_TEMPLATE = (
    "COLOR PALETTE INSTRUCTION: The primary/dominant color MUST be based on this specific color: "
    "{color}."
)

ASSET_INTEGRATION_CLAUSE = (
    "Asset Integration: Incorporate the logos or secondary elements from the asset images provided "
    "naturally into the composition."
)

VARIATION_TEMPLATE = "Variation {index}: slightly vary lighting details"

TITLE_LABELS: Dict[GeneratorMode, str] = {
    GeneratorMode.HUMAN: "人物",
    GeneratorMode.OBJECT: "产品",
    GeneratorMode.ENHANCE: "编辑",
    GeneratorMode.INFOPRODUCT: "专家",
}


def mode_clauses(mode: GeneratorMode | str) -> ModeClauses:
    """Return the clause set for a generation mode."""
    try:
        return MODE_CLAUSES[GeneratorMode(mode)]
    except (KeyError, ValueError) as exc:
        raise KeyError(f"未知的生成模式 '{mode}'") from exc


def position_clause(position: SubjectPosition | str) -> str:
    try:
        return POSITION_CLAUSES[SubjectPosition(position)]
    except (KeyError, ValueError) as exc:
        raise KeyError(f"未知的主体位置 '{position}'") from exc
