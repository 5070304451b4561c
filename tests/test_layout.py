"""
Tests for print geometry: trim, bleed, safety box, gutter and cover spread.
"""

import pytest

from scrapbook_press_backend.errors import InvalidTrimSize
from scrapbook_press_backend.layout import (
    BLEED_PX,
    DEVICE_SCALE_FACTOR,
    GUTTER_PX,
    SAFETY_PX,
    TRIM_SIZES,
    Box,
    check_safety_zone,
    get_cover_spread,
    get_layout_spec,
    scale_to_base,
    scale_to_print,
)


class TestConstants:
    """Pixel constants derived from inch values."""

    def test_derived_pixel_values(self):
        assert BLEED_PX == 38
        assert SAFETY_PX == 150
        assert GUTTER_PX == 38
        assert DEVICE_SCALE_FACTOR == pytest.approx(4.1667, rel=1e-4)

    def test_scaling_between_resolutions(self):
        assert scale_to_print(594) == 2475
        assert scale_to_base(2475) == 594
        assert scale_to_print(36) == 150


class TestLayoutSpec:
    """Tests for get_layout_spec()."""

    def test_reference_example_8x8_with_bleed(self):
        """20 pages, 8x8, bleed on."""
        spec = get_layout_spec("8x8", include_bleed=True, page_count=20)

        assert (spec.viewport.width, spec.viewport.height) == (594, 594)
        assert (spec.output.width, spec.output.height) == (2475, 2475)
        assert spec.trim_box == Box(38, 38, 2400, 2400)
        assert spec.safety_box == Box(188, 188, 2024, 2024)
        assert spec.gutter.needed is False
        assert spec.gutter.extra_px == 0

    def test_without_bleed(self):
        spec = get_layout_spec("10x10", include_bleed=False)

        assert (spec.viewport.width, spec.viewport.height) == (720, 720)
        assert (spec.output.width, spec.output.height) == (3000, 3000)
        assert spec.trim_box == Box(0, 0, 3000, 3000)
        assert spec.safety_box == Box(150, 150, 2700, 2700)
        assert spec.bleed_px == 0

    @pytest.mark.parametrize("trim_key", list(TRIM_SIZES))
    @pytest.mark.parametrize("include_bleed", [True, False])
    def test_output_equals_trim_plus_bleed(self, trim_key, include_bleed):
        spec = get_layout_spec(trim_key, include_bleed=include_bleed)
        trim_w, trim_h = TRIM_SIZES[trim_key].print_px
        extra = 2 * BLEED_PX if include_bleed else 0

        assert abs(spec.output.width - (trim_w + extra)) <= 1
        assert abs(spec.output.height - (trim_h + extra)) <= 1

    @pytest.mark.parametrize("trim_key", list(TRIM_SIZES))
    @pytest.mark.parametrize("page_count", [0, 60, 61, 200])
    def test_safety_box_inside_trim_by_margin(self, trim_key, page_count):
        spec = get_layout_spec(trim_key, include_bleed=True, page_count=page_count)
        trim, safe = spec.trim_box, spec.safety_box

        assert safe.x - trim.x >= SAFETY_PX
        assert safe.y - trim.y >= SAFETY_PX
        assert trim.right - safe.right >= SAFETY_PX
        assert trim.bottom - safe.bottom >= SAFETY_PX
        assert trim.contains(safe)

    def test_gutter_threshold_is_exclusive(self):
        """Exactly 60 pages gets no gutter; 61 does."""
        at_threshold = get_layout_spec("8x8", page_count=60)
        above = get_layout_spec("8x8", page_count=61)

        assert at_threshold.gutter.needed is False
        assert above.gutter.needed is True
        assert above.safety_box.x == at_threshold.safety_box.x + GUTTER_PX
        assert above.safety_box.width == at_threshold.safety_box.width - GUTTER_PX
        assert above.safety_box.y == at_threshold.safety_box.y
        assert above.safety_box.height == at_threshold.safety_box.height
        assert above.gutter.inside_margin_px == SAFETY_PX + GUTTER_PX
        assert "61-page" in above.gutter.recommendation

    def test_unknown_trim_size_raises(self):
        with pytest.raises(InvalidTrimSize) as excinfo:
            get_layout_spec("6x9")
        assert excinfo.value.trim_size == "6x9"
        assert "8x8" in excinfo.value.valid

    def test_invalid_trim_size_is_a_value_error(self):
        with pytest.raises(ValueError):
            get_layout_spec("A4")

    def test_negative_page_count_raises(self):
        with pytest.raises(ValueError):
            get_layout_spec("8x8", page_count=-1)


class TestSafetyZoneCheck:
    """Tests for check_safety_zone()."""

    def test_box_inside_safety_zone(self):
        result = check_safety_zone(Box(400, 400, 500, 500), "8x8")
        assert result.safe is True
        assert result.violations == []

    def test_box_crossing_left_and_bottom(self):
        result = check_safety_zone(Box(100, 1000, 300, 2000), "8x8")
        assert result.safe is False
        assert any(v.startswith("left") for v in result.violations)
        assert any(v.startswith("bottom") for v in result.violations)

    def test_crossing_distances_per_edge(self):
        result = check_safety_zone(Box(100, 1000, 300, 2000), "8x8")
        # safety box is 188..2212 on both axes
        assert result.crossings == {"left": 88, "bottom": 788}

    def test_inside_box_has_no_crossings(self):
        assert check_safety_zone(Box(400, 400, 500, 500), "8x8").crossings == {}


class TestCoverSpread:
    """Tests for get_cover_spread()."""

    def test_softcover_dimensions(self):
        spread = get_cover_spread("8x8", 100, paper_type="standard", binding="soft")

        assert spread.inches.spine_width == pytest.approx(0.2252)
        assert spread.inches.total_width == pytest.approx(16.4752)
        assert spread.inches.total_height == pytest.approx(8.25)
        assert spread.pdf_width == 4943
        assert spread.pdf_height == 2475
        assert spread.spine_width_px == 68
        assert spread.wrap_px == 0

    def test_hardcover_adds_wrap_on_every_edge(self):
        spread = get_cover_spread("8x8", 100, binding="hard")

        assert spread.inches.wrap_width == 0.75
        assert spread.inches.total_width == pytest.approx(17.9752)
        assert spread.inches.total_height == pytest.approx(9.75)
        assert spread.pdf_height == 2925

    def test_premium_paper_makes_thicker_spine(self):
        standard = get_cover_spread("10x10", 200, paper_type="standard")
        premium = get_cover_spread("10x10", 200, paper_type="premium")
        assert premium.inches.spine_width > standard.inches.spine_width
        assert premium.inches.spine_width == pytest.approx(0.5)

    def test_zones_are_laid_out_back_spine_front(self):
        spread = get_cover_spread("8x8", 100)
        zones = spread.zones

        assert zones.back_cover.x == BLEED_PX
        assert zones.spine.x == zones.back_cover.right
        assert zones.front_cover.x == zones.spine.right
        assert zones.front_cover.width == zones.back_cover.width == 2400
        assert zones.spine_safety.width == round(spread.spine_width_px * 0.8)
        assert zones.spine.contains(zones.spine_safety)
        assert zones.front_cover.contains(zones.front_safety)

    def test_points_follow_inches(self):
        spread = get_cover_spread("8.5x11", 40)
        assert spread.width_pt == pytest.approx(spread.inches.total_width * 72)
        assert spread.height_pt == pytest.approx(spread.inches.total_height * 72)

    def test_unknown_paper_type_raises(self):
        with pytest.raises(ValueError, match="paper type"):
            get_cover_spread("8x8", 20, paper_type="glossy")

    def test_unknown_binding_raises(self):
        with pytest.raises(ValueError, match="binding"):
            get_cover_spread("8x8", 20, binding="spiral")
