"""Tests for preset loading and descriptor construction."""

from __future__ import annotations

import json

import pytest

from app.studio.models import BinaryAsset
from app.studio.presets import (
    DEFAULT_BACKGROUND_INSTRUCTION,
    background_descriptor,
    THUMBNAIL_ASPECT_RATIO,
    build_edit_instruction,
    build_infographic_instruction,
    build_pose_instruction,
    build_thumbnail_instruction,
    descriptors_for_poses,
    infographic_descriptor,
    load_presets,
    thumbnail_descriptor,
    thumbnail_refine_descriptor,
)

REFERENCE = BinaryAsset(b"ref", "image/jpeg")


@pytest.fixture
def catalog():
    return load_presets()


def test_bundled_presets_load(catalog) -> None:
    assert "arms-crossed" in catalog.poses
    assert "comic-style" in catalog.styles
    data = catalog.to_dict()
    assert {"id", "name", "prompt"} <= set(data["poses"][0])


def test_missing_file(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_presets(tmp_path / "nope.json")


def test_presets_file_from_environment(tmp_path, monkeypatch) -> None:
    path = tmp_path / "presets.json"
    path.write_text(json.dumps({
        "poses": [{"id": "wave", "prompt": "waving"}],
        "styles": [{"value": "ink", "style_prompt": "ink drawing"}],
    }))
    monkeypatch.setenv("PRESETS_FILE", str(path))
    catalog = load_presets()
    assert list(catalog.poses) == ["wave"]
    assert catalog.poses["wave"].name == "wave"


def test_pose_instruction_includes_extra() -> None:
    text = build_pose_instruction("ink drawing", "waving", "wearing a hat")
    assert text.startswith("ink drawing, waving, wearing a hat. Maintain exact same character")


class TestEditInstruction:
    def test_keep_and_change_wording(self) -> None:
        assert build_edit_instruction("make them wave").startswith("Keep the same character")

    def test_style_transformation_wording(self) -> None:
        text = build_edit_instruction("convert this photograph into a painting")
        assert text.startswith("Transform this photograph into the requested style")


def test_descriptors_follow_request_order(catalog) -> None:
    descriptors = descriptors_for_poses(
        catalog, REFERENCE, ["sitting-desk", "arms-crossed", "sitting-desk"], "sketch"
    )
    assert [d.id for d in descriptors] == ["sitting-desk", "arms-crossed"]
    assert descriptors[0].reference_assets == (REFERENCE,)
    assert "pencil sketch" in descriptors[0].instruction_text


@pytest.mark.parametrize("poses,style", [(["arms-crossed"], "no-such-style"), (["no-such-pose"], "sketch")])
def test_unknown_ids_raise_key_error(catalog, poses, style) -> None:
    with pytest.raises(KeyError):
        descriptors_for_poses(catalog, REFERENCE, poses, style)


def test_background_descriptor_orders_images() -> None:
    background = BinaryAsset(b"bg", "image/png")
    descriptor = background_descriptor(REFERENCE, background)
    assert descriptor.reference_assets == (REFERENCE, background)
    assert descriptor.instruction_text == DEFAULT_BACKGROUND_INSTRUCTION
    assert background_descriptor(REFERENCE, background, "beach at dusk").instruction_text == "beach at dusk"


class TestBinaryAsset:
    def test_data_url_mime_wins(self) -> None:
        asset = BinaryAsset.from_base64("data:image/webp;base64,aGk=", "image/jpeg")
        assert asset == BinaryAsset(b"hi", "image/webp")
        assert asset.to_data_url() == "data:image/webp;base64,aGk="

    def test_invalid_base64(self) -> None:
        with pytest.raises(ValueError):
            BinaryAsset.from_base64("not base64!!")

    def test_from_data_url(self) -> None:
        assert BinaryAsset.from_data_url("data:image/png;base64,aGk=") == BinaryAsset(b"hi", "image/png")
        assert BinaryAsset.from_data_url("data:;base64,aGk=", "image/gif").mime_type == "image/gif"

    @pytest.mark.parametrize("url", ["aGk=", "data:image/png,hi", "data:image/png;base64"])
    def test_from_data_url_rejects_other_forms(self, url) -> None:
        with pytest.raises(ValueError):
            BinaryAsset.from_data_url(url)


class TestInfographic:
    def test_font_description_wins_over_font_image(self) -> None:
        text = build_infographic_instruction("list three tips", "bold serif", has_font_image=True, brand_color="#123456")
        assert 'Use the font style: "bold serif"' in text
        assert "font reference image" not in text
        assert "brand color #123456" in text
        assert "Additional instructions: list three tips." in text

    def test_descriptor_orders_content_style_font(self) -> None:
        style = BinaryAsset(b"style", "image/png")
        font = BinaryAsset(b"font", "image/png")
        descriptor = infographic_descriptor(REFERENCE, style, font_image=font)
        assert descriptor.id == "infographic"
        assert descriptor.reference_assets == (REFERENCE, style, font)
        assert "font reference image" in descriptor.instruction_text

    def test_descriptor_without_font_image(self) -> None:
        descriptor = infographic_descriptor(REFERENCE, BinaryAsset(b"style"))
        assert len(descriptor.reference_assets) == 2
        assert "font" not in descriptor.instruction_text


class TestThumbnail:
    def test_widescreen_and_title(self) -> None:
        descriptor = thumbnail_descriptor("Big News", [REFERENCE], style_prompt="neon glow")
        assert descriptor.aspect_ratio == THUMBNAIL_ASPECT_RATIO == "16:9"
        assert 'VIDEO TITLE TEXT TO DISPLAY: "Big News"' in descriptor.instruction_text
        assert "VISUAL STYLE: neon glow" in descriptor.instruction_text
        assert descriptor.reference_assets == (REFERENCE,)

    def test_style_reference_replaces_style_prompt(self) -> None:
        style = BinaryAsset(b"style", "image/png")
        descriptor = thumbnail_descriptor("t", [REFERENCE], style_prompt="neon", style_reference=style,
                                          inspiration_weight="high")
        assert descriptor.reference_assets == (REFERENCE, style)
        assert "High Inspiration" in descriptor.instruction_text
        assert "VISUAL STYLE" not in descriptor.instruction_text

    def test_weight_ignored_without_style_reference(self) -> None:
        assert "Inspiration" not in build_thumbnail_instruction("t", inspiration_weight=None)
        assert "Inspiration" not in thumbnail_descriptor("t", inspiration_weight="low").instruction_text

    @pytest.mark.parametrize("title,weight", [("  ", "medium"), ("t", "extreme")])
    def test_invalid(self, title, weight) -> None:
        with pytest.raises(ValueError):
            thumbnail_descriptor(title, style_reference=REFERENCE, inspiration_weight=weight)

    def test_refine(self) -> None:
        descriptor = thumbnail_refine_descriptor(REFERENCE, "make the title yellow")
        assert descriptor.id == "thumbnail-refine"
        assert descriptor.aspect_ratio == "16:9"
        assert descriptor.instruction_text.endswith("EDIT INSTRUCTION: make the title yellow")
        with pytest.raises(ValueError):
            thumbnail_refine_descriptor(REFERENCE, " ")
