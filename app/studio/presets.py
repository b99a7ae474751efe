"""
Pose and art-style presets, and the instruction templates that turn requests
into Descriptors.
"""
import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .models import BinaryAsset, Descriptor

PRESETS_FILE_PATH = Path(__file__).parent.parent.parent / "presets.json"

STYLE_TRANSFORM_PATTERN = re.compile(
    r"convert.*photograph|transform.*photo|remove.*photographic.*realism|replace.*with.*illustrated",
    re.IGNORECASE,
)

DEFAULT_BACKGROUND_INSTRUCTION = (
    "Composite the person/character from the first image into the setting/background from the "
    "second image. PRIORITY: Create a cohesive, harmonized final image where the subject and "
    "background look like they naturally belong together. Adjust the lighting, color grading, "
    "shadows, and atmosphere on the subject to match the background environment."
)


@dataclass(frozen=True)
class Pose:
    id: str
    name: str
    prompt: str


@dataclass(frozen=True)
class ArtStyle:
    value: str
    label: str
    style_prompt: str


@dataclass
class PresetCatalog:
    poses: Dict[str, Pose] = field(default_factory=dict)
    styles: Dict[str, ArtStyle] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, List[dict]]:
        return {
            "poses": [vars(p) for p in self.poses.values()],
            "styles": [vars(s) for s in self.styles.values()],
        }


def load_presets(path: Optional[Path] = None) -> PresetCatalog:
    """
    Load pose and style presets from presets.json.

    The PRESETS_FILE environment variable overrides the bundled file.
    """
    path = Path(path or os.getenv("PRESETS_FILE") or PRESETS_FILE_PATH)
    if not path.exists():
        raise FileNotFoundError(f"Presets file not found: {path}")

    with open(path, "r") as f:
        data = json.load(f)

    return PresetCatalog(
        poses={p["id"]: Pose(p["id"], p.get("name", p["id"]), p["prompt"]) for p in data.get("poses", [])},
        styles={
            s["value"]: ArtStyle(s["value"], s.get("label", s["value"]), s["style_prompt"])
            for s in data.get("styles", [])
        },
    )


def build_pose_instruction(style_prompt: str, pose_prompt: str, extra: str = "") -> str:
    extra = f", {extra}" if extra else ""
    return (
        f"{style_prompt}, {pose_prompt}{extra}. Maintain exact same character appearance, clothing, "
        "and facial features as reference image. Focus on artistic style and rendering technique only, "
        "not pose or character identity. High quality, detailed."
    )


def build_edit_instruction(prompt: str) -> str:
    """Wrap a prompt in the keep-the-character edit instruction sent with the reference image."""
    if STYLE_TRANSFORM_PATTERN.search(prompt):
        return (
            f"Transform this photograph into the requested style: {prompt}. Keep the same character "
            "identity, facial features, clothing, and pose, but completely change the rendering style "
            "from photographic to the illustrated/painted style described."
        )
    return (
        f"Keep the same character, appearance, clothing, and visual style, but {prompt}. Maintain the "
        "character's identity, facial features, and overall aesthetic while only changing what is "
        "specifically requested."
    )


def build_background_instruction(custom_prompt: Optional[str] = None) -> str:
    return custom_prompt or DEFAULT_BACKGROUND_INSTRUCTION


def descriptors_for_poses(
    catalog: PresetCatalog,
    reference: BinaryAsset,
    pose_ids: Sequence[str],
    style_value: str,
    extra: str = "",
) -> List[Descriptor]:
    """
    One descriptor per requested pose, in request order. Repeated ids are
    generated once.

    Raises:
        KeyError: unknown pose id or style value
    """
    if style_value not in catalog.styles:
        raise KeyError(f"Unknown style: {style_value}")
    style = catalog.styles[style_value]

    descriptors = []
    seen = set()
    for pose_id in pose_ids:
        if pose_id in seen:
            continue
        if pose_id not in catalog.poses:
            raise KeyError(f"Unknown pose: {pose_id}")
        seen.add(pose_id)
        prompt = build_pose_instruction(style.style_prompt, catalog.poses[pose_id].prompt, extra)
        descriptors.append(Descriptor(
            id=pose_id,
            instruction_text=build_edit_instruction(prompt),
            reference_assets=(reference,),
        ))
    return descriptors


def background_descriptor(
    character: BinaryAsset,
    background: BinaryAsset,
    prompt: Optional[str] = None,
    descriptor_id: str = "background-swap",
) -> Descriptor:
    # Character first, background second; the instruction refers to them in that order
    return Descriptor(
        id=descriptor_id,
        instruction_text=build_background_instruction(prompt),
        reference_assets=(character, background),
    )


# Infographics: content image first, style image second, optional font image third

INFOGRAPHIC_FONT_IMAGE_INSTRUCTION = (
    " Use the typography style shown in the font reference image. Match the font characteristics, "
    "weight, and style from that image for all text in the infographic."
)


def build_infographic_instruction(
    prompt: str = "",
    font_description: Optional[str] = None,
    has_font_image: bool = False,
    brand_color: Optional[str] = None,
) -> str:
    instruction = (
        "Create an infographic using the content from the first image and the visual style of the "
        "second image."
    )
    # A written font description takes precedence over a font image
    if font_description:
        instruction += (
            f' Use the font style: "{font_description}". Apply this typography throughout the '
            "infographic for all text elements."
        )
    elif has_font_image:
        instruction += INFOGRAPHIC_FONT_IMAGE_INSTRUCTION
    if brand_color:
        instruction += (
            f" Use the brand color {brand_color} as the primary accent color throughout the infographic. "
            "Incorporate this color strategically in headings, highlights, icons, and key visual elements "
            "while maintaining good contrast and readability."
        )
    if prompt:
        instruction += f" Additional instructions: {prompt}."
    instruction += (
        " Combine the information structure of the first image with the aesthetic of the second image "
        "to create a cohesive and informative infographic. High resolution, clear text, professional design."
    )
    return instruction


def infographic_descriptor(
    content: BinaryAsset,
    style: BinaryAsset,
    prompt: str = "",
    font_description: Optional[str] = None,
    font_image: Optional[BinaryAsset] = None,
    brand_color: Optional[str] = None,
    descriptor_id: str = "infographic",
) -> Descriptor:
    assets = (content, style) if font_image is None else (content, style, font_image)
    return Descriptor(
        id=descriptor_id,
        instruction_text=build_infographic_instruction(
            prompt, font_description, font_image is not None, brand_color
        ),
        reference_assets=assets,
    )


# Thumbnails: always widescreen, faces first, optional style reference last

THUMBNAIL_ASPECT_RATIO = "16:9"

INSPIRATION_INSTRUCTIONS = {
    "low": (
        "STYLE REFERENCE IMAGE PROVIDED (Low Inspiration):\n"
        "- A style reference thumbnail has been provided for loose inspiration\n"
        "- Take general inspiration from the color palette and mood, but feel free to be creative\n"
        "- Use it as a starting point, not a strict guide"
    ),
    "medium": (
        "STYLE REFERENCE IMAGE PROVIDED (Medium Inspiration):\n"
        "- A style reference thumbnail has been provided - match its key visual elements\n"
        "- Capture the color palette, lighting mood, and general aesthetic\n"
        "- Apply similar text treatment and graphic style\n"
        "- Balance between matching the reference and adapting to the new content"
    ),
    "high": (
        "STYLE REFERENCE IMAGE PROVIDED (High Inspiration - Recreate):\n"
        "- A style reference thumbnail has been provided - CLOSELY recreate its visual style\n"
        "- Match the exact color grading, lighting style, and effects as closely as possible\n"
        "- Replicate the text treatment, typography style, and graphic element placement\n"
        "- This should look like it belongs in the same series as the reference"
    ),
}

THUMBNAIL_DIMENSION_RULES = (
    "MANDATORY OUTPUT FORMAT: Generate a WIDESCREEN 16:9 YouTube thumbnail.\n\n"
    "CRITICAL DIMENSION RULES:\n"
    "- Output image MUST be exactly 16:9 aspect ratio (1280x720 or 1920x1080)\n"
    "- IGNORE the dimensions/orientation of any uploaded reference photos\n"
    "- Reference photos are ONLY for extracting the person's face/likeness OR visual style\n"
    "- Even if the input photo is PORTRAIT/VERTICAL, output MUST be LANDSCAPE/HORIZONTAL"
)

THUMBNAIL_COMPOSITION = (
    "COMPOSITION FOR 16:9 WIDESCREEN CANVAS:\n"
    "- Place the person (from reference) on the LEFT or RIGHT third of the wide frame\n"
    "- Title text goes on the opposite side with large, bold lettering\n"
    "- Use the FULL WIDTH of the 16:9 canvas - no cropping to match input photo\n"
    "- The reference photo provides ONLY the face to use, NOT the framing or dimensions"
)


def build_thumbnail_instruction(
    title: str,
    description: str = "",
    style_prompt: str = "",
    inspiration_weight: Optional[str] = None,
) -> str:
    """
    Thumbnail prompt. `inspiration_weight` is set only when a style reference
    image is sent, and then replaces `style_prompt`.

    Raises:
        ValueError: unknown inspiration weight
    """
    if inspiration_weight is not None and inspiration_weight not in INSPIRATION_INSTRUCTIONS:
        raise ValueError(
            f"Unknown inspiration weight: {inspiration_weight}. Use one of: {', '.join(INSPIRATION_INSTRUCTIONS)}."
        )
    sections = [THUMBNAIL_DIMENSION_RULES, f'VIDEO TITLE TEXT TO DISPLAY: "{title}"']
    if description:
        sections.append(f"ADDITIONAL CONTEXT: {description}")
    if inspiration_weight is not None:
        sections.append(INSPIRATION_INSTRUCTIONS[inspiration_weight])
    elif style_prompt:
        sections.append(f"VISUAL STYLE: {style_prompt}")
    sections.append(THUMBNAIL_COMPOSITION)
    return "\n\n".join(sections)


def thumbnail_descriptor(
    title: str,
    faces: Sequence[BinaryAsset] = (),
    description: str = "",
    style_prompt: str = "",
    style_reference: Optional[BinaryAsset] = None,
    inspiration_weight: str = "medium",
    descriptor_id: str = "thumbnail",
) -> Descriptor:
    """
    Raises:
        ValueError: empty title or unknown inspiration weight
    """
    if not title.strip():
        raise ValueError("A thumbnail title is required")
    weight = inspiration_weight if style_reference is not None else None
    assets = tuple(faces) + ((style_reference,) if style_reference is not None else ())
    return Descriptor(
        id=descriptor_id,
        instruction_text=build_thumbnail_instruction(title, description, style_prompt, weight),
        reference_assets=assets,
        aspect_ratio=THUMBNAIL_ASPECT_RATIO,
    )


def build_thumbnail_refine_instruction(instruction: str) -> str:
    return (
        "Edit this YouTube thumbnail based on the following instruction.\n\n"
        "MANDATORY: Output MUST remain exactly 16:9 widescreen aspect ratio (1280x720 or 1920x1080).\n"
        "- Keep the same LANDSCAPE/HORIZONTAL orientation as the input\n"
        "- Do NOT change dimensions to square or portrait under any circumstances\n\n"
        f"EDIT INSTRUCTION: {instruction}"
    )


def thumbnail_refine_descriptor(
    thumbnail: BinaryAsset,
    instruction: str,
    descriptor_id: str = "thumbnail-refine",
) -> Descriptor:
    if not instruction.strip():
        raise ValueError("A refinement instruction is required")
    return Descriptor(
        id=descriptor_id,
        instruction_text=build_thumbnail_refine_instruction(instruction),
        reference_assets=(thumbnail,),
        aspect_ratio=THUMBNAIL_ASPECT_RATIO,
    )
