"""Deterministic assembly of multimodal generation requests.

A request is an ordered list of image segments followed by exactly one text
segment. Image order is subjects, then references (in user priority order),
then secondary assets. The text segment is built from fixed clause tables in
a fixed order, so identical inputs always produce identical text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from modules.optimization.prompt_presets import (
    ASSET_INTEGRATION_CLAUSE,
    BLUR_CLAUSE,
    GRADIENT_CLAUSE,
    MAIN_COLOR_TEMPLATE,
    PALETTE_TEMPLATE,
    REFERENCE_SYNTHESIS_HEADER,
    REFERENCE_SYNTHESIS_INSTRUCTION,
    SHARP_CLAUSE,
    VARIATION_TEMPLATE,
    GeneratorMode,
    SubjectPosition,
    mode_clauses,
    position_clause,
)
from modules.pipelines.references import ReferenceItem
from modules.utils.image_utils import sniff_mime_type

_HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")

DESIGN_CATEGORIES = ("MOCKUPS", "ICONS", "PRODUCTS", "LOGOS", "PROFILE")


@dataclass(slots=True)
class GenerationAttributes:
    """Stylistic toggles chosen in the UI."""

    use_gradient: bool = True
    use_blur: bool = False
    use_main_color: bool = False
    main_color: str = ""

    def validate(self) -> None:
        if self.use_main_color and not _HEX_COLOR.match(self.main_color or ""):
            raise ValueError(f"无效的主色值：'{self.main_color}'，请使用 #RGB 或 #RRGGBB 格式。")


@dataclass(slots=True)
class ColorPalette:
    """Free-text color descriptors, only used by the expert mode."""

    primary: str
    secondary: str
    accent: str


@dataclass(frozen=True, slots=True)
class ImageSegment:
    data: bytes
    mime_type: str = "image/png"


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    """One call to the generation service. Built per call, never stored."""

    mode: Optional[GeneratorMode]
    image_segments: Tuple[ImageSegment, ...]
    text_segment: str
    aspect_ratio: str
    image_size: str = "2K"


@dataclass(slots=True)
class PromptInputs:
    """Everything the landing-page generator needs to build a request."""

    mode: GeneratorMode
    subject_images: Sequence[bytes]
    reference_items: Sequence[ReferenceItem] = field(default_factory=list)
    asset_images: Sequence[bytes] = field(default_factory=list)
    user_prompt: str = ""
    position: SubjectPosition = SubjectPosition.RIGHT
    attributes: GenerationAttributes = field(default_factory=GenerationAttributes)
    target_width: int = 1920
    target_height: int = 1080
    palette: Optional[ColorPalette] = None


def classify_aspect_ratio(width: float, height: float) -> str:
    """Bucket a width/height pair into one of five canonical ratios."""
    if width <= 0 or height <= 0:
        raise ValueError("宽度和高度必须为正数")
    ratio = width / height
    if ratio > 1.5:
        return "16:9"
    if ratio > 1.2:
        return "4:3"
    if ratio > 0.9:
        return "1:1"
    if ratio > 0.7:
        return "3:4"
    return "9:16"


def expand_image_tags(text: str, subjects: int, references: int, assets: int) -> str:
    """Replace ``@img1``/``@ref1``/``@asset1`` style tags with plain descriptions."""
    result = text

    def _sub(prefix: str, count: int, single: str, plural: str) -> None:
        nonlocal result
        # Higher indices first so @img1 does not eat the prefix of @img10.
        for index in range(count, 0, -1):
            replacement = single if count == 1 else plural.format(index=index)
            result = re.sub(rf"@{prefix}{index}(?!\d)", replacement, result, flags=re.IGNORECASE)

    _sub("img", subjects, "the subject image provided", "subject image #{index}")
    _sub("ref", references, "the style reference image", "style reference image #{index}")
    _sub("asset", assets, "the asset/logo image", "asset image #{index}")
    return result


def _reference_lines(items: Sequence[ReferenceItem]) -> List[str]:
    lines = [REFERENCE_SYNTHESIS_HEADER.format(count=len(items))]
    for index, item in enumerate(items, start=1):
        description = item.description.strip()
        requirement = (
            f'(User Requirement: "{description}")'
            if description
            else "(User Requirement: Extract general style)"
        )
        lines.append(f"Reference Image {index} Context: {requirement}.")
    lines.append(REFERENCE_SYNTHESIS_INSTRUCTION)
    return lines


def assemble_text(inputs: PromptInputs) -> str:
    """Compose the instruction text segment. Pure; performs no I/O."""
    mode = GeneratorMode(inputs.mode)
    clauses = mode_clauses(mode)
    aspect_ratio = classify_aspect_ratio(inputs.target_width, inputs.target_height)
    subject_count = len(inputs.subject_images)
    reference_count = len(inputs.reference_items)
    asset_count = len(inputs.asset_images)

    sections: List[str] = [
        "Task: Generate a high-resolution image.\n"
        f"Target Resolution: {inputs.target_width}x{inputs.target_height} pixels "
        f"(aspect ratio {aspect_ratio})."
    ]

    if subject_count:
        sections.append(clauses.subject_fidelity.format(count=subject_count))

    if reference_count:
        sections.append("\n".join(_reference_lines(inputs.reference_items)))

    sections.append(f"Positioning Guidelines: {position_clause(inputs.position)}")

    attributes = inputs.attributes
    if attributes.use_gradient:
        sections.append(GRADIENT_CLAUSE)
    if attributes.use_blur:
        sections.append(BLUR_CLAUSE)
    if not attributes.use_gradient and not attributes.use_blur:
        sections.append(SHARP_CLAUSE)

    if mode is GeneratorMode.INFOPRODUCT and inputs.palette is not None:
        palette = inputs.palette
        sections.append(
            PALETTE_TEMPLATE.format(
                primary=palette.primary, secondary=palette.secondary, accent=palette.accent
            )
        )

    if attributes.use_main_color and attributes.main_color:
        sections.append(MAIN_COLOR_TEMPLATE.format(color=attributes.main_color))

    if asset_count:
        sections.append(ASSET_INTEGRATION_CLAUSE)

    user_prompt = inputs.user_prompt.strip()
    if user_prompt:
        expanded = expand_image_tags(user_prompt, subject_count, reference_count, asset_count)
        sections.append(f"User Scenario/Context Instructions: {expanded}")

    sections.append(f"Quality Guidelines: {clauses.quality_guideline}")
    return "\n\n".join(sections) + "\n"


def _segments(images: Sequence[bytes]) -> List[ImageSegment]:
    return [ImageSegment(data=image, mime_type=sniff_mime_type(image)) for image in images]


def assemble_request(inputs: PromptInputs, image_size: str = "2K") -> GenerationRequest:
    """Build the full ordered request for the landing-page generator."""
    inputs.attributes.validate()
    segments = _segments(inputs.subject_images)
    segments.extend(
        ImageSegment(data=item.image, mime_type=item.mime_type) for item in inputs.reference_items
    )
    segments.extend(_segments(inputs.asset_images))
    return GenerationRequest(
        mode=GeneratorMode(inputs.mode),
        image_segments=tuple(segments),
        text_segment=assemble_text(inputs),
        aspect_ratio=classify_aspect_ratio(inputs.target_width, inputs.target_height),
        image_size=image_size,
    )


def with_variation(request: GenerationRequest, index: int, batch_size: int) -> GenerationRequest:
    """Return a copy of ``request`` tagged as variation ``index`` (0-based).

    Single-image batches are returned unchanged.
    """
    if batch_size <= 1:
        return request
    suffix = VARIATION_TEMPLATE.format(index=index + 1)
    return replace(request, text_segment=f"{request.text_segment}\n{suffix}")


def build_refine_request(
    image: bytes,
    instructions: str,
    extra_images: Sequence[bytes] = (),
    image_size: str = "2K",
) -> GenerationRequest:
    """Edit an existing result while keeping its composition."""
    text = f"Edit the provided image (first image). Instructions: {instructions.strip()}."
    if extra_images:
        text += "\nUse the additional images provided as context/content for the edit."
    text += (
        "\nCRITICAL: Maintain the exact context, lighting, and composition of the original image. "
        "Only apply the specific adjustment requested. Do not change the subject's face or "
        "position unless explicitly asked."
    )
    return GenerationRequest(
        mode=None,
        image_segments=tuple(_segments([image, *extra_images])),
        text_segment=text,
        aspect_ratio="16:9",
        image_size=image_size,
    )


def build_vertical_request(
    image: bytes,
    target_height: int = 1920,
    instructions: str = "",
    target_width: int = 1080,
    image_size: str = "2K",
) -> GenerationRequest:
    """Recreate a result as a vertical background suited for text overlays."""
    custom = instructions.strip() or "None. Follow standard vertical formatting."
    text = (
        f"Recreate this image as a {target_width}x{target_height} (Vertical) background.\n\n"
        "LAYOUT RULES:\n"
        "1. Align the subject's EYE-LINE (or top focal point) to the VERTICAL CENTER of the canvas.\n"
        "2. The subject should occupy the upper portion of the image.\n"
        "3. Extend the bottom part of the image naturally using textures from the environment "
        "but keep it low contrast for text overlay.\n\n"
        "TRANSITION FIX:\n"
        "If the original image was a crop, DO NOT leave a hard cut at the bottom. Add a subtle "
        "gradient overlay, fog, or blend the torso/clothing downwards to mask the transition.\n\n"
        f"USER CUSTOM INSTRUCTIONS FOR VERTICAL VERSION:\n{custom}\n"
    )
    return GenerationRequest(
        mode=None,
        image_segments=tuple(_segments([image])),
        text_segment=text,
        aspect_ratio=classify_aspect_ratio(target_width, target_height),
        image_size=image_size,
    )


def build_inpaint_request(
    image: bytes, mask: bytes, instructions: str = "", image_size: str = "2K"
) -> GenerationRequest:
    """Edit only the masked region of an image."""
    request_line = (
        f"User Request: {instructions.strip()}"
        if instructions.strip()
        else "Remove the masked object and fill the background naturally (Inpainting/Removal)."
    )
    text = (
        "INPAINTING TASK:\n"
        "The first image is the ORIGINAL IMAGE.\n"
        "The second image is the MASK (the colored areas indicate what to edit).\n\n"
        "INSTRUCTION:\n"
        "Edit the ORIGINAL IMAGE only in the areas highlighted by the MASK.\n"
        f"{request_line}\n\n"
        "CRITICAL:\n"
        "1. Do NOT change anything outside the masked area.\n"
        "2. Blend the edges seamlessly.\n"
        "3. Maintain the original resolution and style."
    )
    return GenerationRequest(
        mode=None,
        image_segments=tuple(_segments([image, mask])),
        text_segment=text,
        aspect_ratio="16:9",
        image_size=image_size,
    )


_ICON_STYLE_NOTES: Dict[str, str] = {
    "Glassmorphism": "Apply a frosted glass effect with transparency, blur, and subtle reflections.",
    "Neon": "Transform into a glowing neon sign effect with bright edges, inner glow, and light emission.",
    "Clay 3D": "Transform into a soft clay 3D render with rounded edges, matte finish, and soft shadows.",
    "Gradient": "Apply a vibrant gradient fill with smooth color transitions.",
}

_PROFILE_STYLE_NOTES: Dict[str, str] = {
    "Corporate": "Clean, professional corporate look. Neutral background, soft studio lighting.",
    "Creative": "Vibrant, artistic. Bold colors, creative lighting effects, modern aesthetic.",
    "Minimalist": "Ultra clean, minimal distractions. Simple solid background, focus on face.",
    "Elegant": "Sophisticated, refined look. Cinematic lighting, subtle shadows, premium feel.",
}

_PROFILE_FRAMING: Dict[str, str] = {
    "Close-up": "face fills most of the frame",
    "Chest-up": "from chest up",
}


def _icon_prompt(inputs: Mapping[str, Any]) -> str:
    bg_color = inputs.get("bg_color") or "transparent"
    background = (
        "a completely transparent background (alpha channel)"
        if bg_color == "transparent"
        else f"a solid {bg_color} background"
    )
    if inputs.get("style_reference_image"):
        style = (
            "STYLE REFERENCE: A style reference image has been provided. Apply its visual style, "
            "effects, lighting, and aesthetic to the icon."
        )
    elif inputs.get("icon_style"):
        icon_style = inputs["icon_style"]
        style = f"TRANSFORMATION STYLE: {icon_style}"
        note = _ICON_STYLE_NOTES.get(icon_style)
        if note:
            style += f"\n- {note}"
    else:
        style = "STYLE: High-end 3D icon style - glossy, volumetric, soft shadows, premium aesthetic."
    color = (
        f"COLOR SCHEME: Apply {inputs['icon_color']} as the primary/dominant color."
        if inputs.get("icon_color")
        else "COLOR SCHEME: Use contextually appropriate, vibrant, professional colors."
    )
    if inputs.get("reference_image"):
        opening = (
            "ICON TRANSFORMATION TASK:\n"
            "The provided image contains an icon or logo that needs to be transformed.\n"
            "CRITICAL: Maintain the EXACT shape, form, and recognizable features of the original "
            "icon/logo. Do NOT create a new icon."
        )
    else:
        opening = (
            f"Create a single, isolated 3D icon of a {inputs.get('description', 'generic symbol')}.\n"
            "CRITICAL: Generate ONLY ONE icon centered in the frame. NO patterns, NO tiles, "
            "NO multiple copies."
        )
    return (
        f"{opening}\n\n{style}\n\n{color}\n"
        f"Background: {background}. The background must be completely clean with no other elements.\n"
        "Format: Square composition (1024x1024), icon centered and filling about 70% of the frame.\n"
        "Quality: 8K ultra-detailed, perfect for app icons or social media."
    )


def _design_prompt(category: str, inputs: Mapping[str, Any]) -> str:
    if category == "MOCKUPS":
        screen = (
            "The screen should display the provided image."
            if inputs.get("screen_image")
            else "The screen should be white/blank or show a placeholder UI."
        )
        return (
            f"Generate a photorealistic {inputs.get('device_type', 'smartphone')} mockup in a "
            "professional studio setting.\n"
            f"Angle: {inputs.get('angle', 'front')} view. The device should appear premium and high-end.\n"
            f"{screen}\n"
            f"Background: Solid/gradient color {inputs.get('bg_color', '#ffffff')}.\n"
            "Lighting: Soft studio light with subtle shadows. 8K quality, commercial advertising aesthetic."
        )
    if category == "ICONS":
        return _icon_prompt(inputs)
    if category == "PRODUCTS":
        colors = ", ".join(inputs.get("product_colors") or []) or "brand colors"
        logo = (
            "Apply the provided logo on the product."
            if inputs.get("logo_image")
            else "The product should have elegant, minimal branding."
        )
        return (
            f"Generate a photorealistic product shot of a premium {inputs.get('product_type', 'product')} "
            f"for {inputs.get('brand_name') or 'a luxury brand'} in the "
            f"{inputs.get('niche') or 'lifestyle'} industry.\n"
            f"The packaging should feature colors: {colors}.\n"
            f"{logo}\n"
            "Background: Clean studio gradient. Floating composition with soft shadows.\n"
            "Lighting: Professional product photography, ray-traced quality. 8K resolution."
        )
    if category == "LOGOS":
        icon = (
            "The logo should include a relevant icon/symbol alongside the text."
            if inputs.get("include_icon")
            else "The logo should be text-only (wordmark)."
        )
        colors = " and ".join(inputs.get("logo_colors") or []) or "black"
        return (
            f"Design a {inputs.get('logo_style', 'modern')} logo for \"{inputs.get('logo_name', '')}\" "
            f"in the {inputs.get('logo_niche', 'general')} industry.\n"
            f"{icon}\n"
            f"Colors: {colors}.\n"
            "Style: Clean, professional, memorable, vector-style appearance.\n"
            "Background: Pure white. The logo should be centered and clearly visible.\n"
            "Generate a single, polished logo design."
        )
    # PROFILE
    bg_color = inputs.get("bg_color", "#1f2937")
    background = (
        f"a professional gradient background based on {bg_color}"
        if inputs.get("bg_type") == "gradient"
        else f"a solid {bg_color} background"
    )
    style = inputs.get("style", "Corporate")
    framing = inputs.get("framing", "Head and shoulders")
    lines = [
        "PROFESSIONAL PROFILE PHOTO GENERATION:",
        "Format: Square 1:1 (1024x1024 pixels).",
        "CRITICAL: Use the provided photo as reference. Keep the face 100% identical - same facial "
        "features, skin tone, and recognizable characteristics.",
        "",
        f"Style: {style}",
    ]
    if style in _PROFILE_STYLE_NOTES:
        lines.append(f"- {_PROFILE_STYLE_NOTES[style]}")
    lines.extend(
        [
            "",
            f"Background: {background}",
            f"Framing: {framing} shot - {_PROFILE_FRAMING.get(framing, 'head and shoulders visible')}",
            f"Lighting: {inputs.get('lighting', 'soft studio')} lighting",
        ]
    )
    if inputs.get("fix_posture"):
        lines.append("Subtly correct the posture to be more professional and confident.")
    if inputs.get("additional_prompt"):
        lines.append(f"Additional instructions: {inputs['additional_prompt']}")
    lines.extend(
        [
            "",
            "Quality: Sharp, high-resolution, professional headshot quality.",
        ]
    )
    return "\n".join(lines)


_DESIGN_IMAGE_KEYS = (
    "screen_image",
    "logo_image",
    "reference_image",
    "style_reference_image",
    "profile_image",
)


def build_design_asset_request(
    category: str, inputs: Mapping[str, Any], image_size: str = "2K"
) -> GenerationRequest:
    """Build a request for the design-asset workspace.

    Args:
        category: One of ``MOCKUPS``, ``ICONS``, ``PRODUCTS``, ``LOGOS``, ``PROFILE``.
        inputs: Form values; image fields hold raw bytes.
    """
    key = category.upper()
    if key not in DESIGN_CATEGORIES:
        raise ValueError(f"未知的设计素材类别：{category}")
    if key == "PROFILE" and not inputs.get("profile_image"):
        raise ValueError("请先上传个人照片。")
    images = [inputs[name] for name in _DESIGN_IMAGE_KEYS if inputs.get(name)]
    return GenerationRequest(
        mode=None,
        image_segments=tuple(_segments(images)),
        text_segment=_design_prompt(key, inputs),
        aspect_ratio="1:1" if key in ("LOGOS", "ICONS", "PROFILE") else "16:9",
        image_size=image_size,
    )
