"""Tests for the region search and match refinement."""

import numpy as np
import pytest

from unlogo.blend import composite_watermark
from unlogo.correlation import correlation_score
from unlogo.geometry import Point, SizeClass
from unlogo.matcher import (
    Match, MatchConfig, find_watermark, refine_match, score_surface, search_bounds
)
from unlogo.utils import to_luminance
from conftest import make_background


def test_match_config_defaults_and_validation():
    config = MatchConfig()
    assert config.step == 2
    assert config.threshold == 0.7
    assert config.refine_radius == 4
    assert config.radius_for(96) == 96
    assert MatchConfig(search_radius=10).radius_for(96) == 10

    with pytest.raises(ValueError, match="search_radius must be non-negative"):
        MatchConfig(search_radius=-1)
    with pytest.raises(ValueError, match="step must be at least 1"):
        MatchConfig(step=0)
    with pytest.raises(ValueError, match="threshold must be between -1 and 1"):
        MatchConfig(threshold=1.5)
    with pytest.raises(ValueError, match="refine_radius must be non-negative"):
        MatchConfig(refine_radius=-2)


def test_search_bounds_are_clamped_to_image():
    assert search_bounds((100, 100), (48, 48), Point(20, 20), 48) == (0, 0, 52, 52)
    assert search_bounds((500, 500), (48, 48), Point(420, 420), 48) == (372, 372, 452, 452)
    # Template larger than the image: no valid offset
    assert search_bounds((60, 200), (96, 96), Point(0, 0), 96) is None


def test_scan_never_leaves_valid_offsets(references):
    """Every scored offset keeps the template inside the image."""
    image = make_background(130, 110, seed=1)
    surface = score_surface(image, references[SizeClass.SMALL], Point(70, 50), 48, step=2)

    assert surface.xs.min() >= 0 and surface.xs.max() <= 130 - 48
    assert surface.ys.min() >= 0 and surface.ys.max() <= 110 - 48
    assert surface.scores.shape == (len(surface.ys), len(surface.xs))
    assert list(surface.xs) == list(range(22, 83, 2))
    assert list(surface.ys) == list(range(2, 63, 2))


def test_surface_agrees_with_single_patch_score(watermarked, references):
    image, _ = watermarked(200, 180, SizeClass.SMALL, 110, 95, seed=4)
    template = references[SizeClass.SMALL]
    surface = score_surface(image, template, Point(112, 96), 10, step=3)

    template_lum = to_luminance(template)
    image_lum = to_luminance(image)
    for i, y in enumerate(surface.ys):
        for j, x in enumerate(surface.xs):
            expected = correlation_score(template_lum, image_lum, int(x), int(y))
            assert surface.scores[i, j] == pytest.approx(expected, abs=1e-4)


def test_flat_patches_score_exactly_zero(references):
    """A constant patch has no variance, so its score is 0 rather than noise."""
    image = make_background(200, 200, value=128, noise=40.0, seed=5)
    image[:, :100, :3] = 90
    template = references[SizeClass.SMALL]
    surface = score_surface(image, template, Point(40, 76), 40, step=1)

    flat_cols = surface.xs <= 100 - 48
    assert np.all(surface.scores[:, flat_cols] == 0.0)
    assert np.all(surface.scores[:, ~flat_cols] != 0.0)

    flat_template = np.full_like(template, 200)
    flat_template[..., 3] = 255
    surface = score_surface(image, flat_template, Point(120, 120), 8)
    assert np.all(surface.scores == 0.0)


def test_finds_logo_at_exact_offset(watermarked, references):
    image, _ = watermarked(400, 400, SizeClass.SMALL, 300, 290)
    matches = find_watermark(image, references[SizeClass.SMALL], Point(320, 320))

    assert len(matches) == 1
    assert (matches[0].x, matches[0].y) == (300, 290)
    assert matches[0].score >= 0.9


def test_no_match_below_threshold(references):
    image = np.zeros((300, 300, 4), dtype=np.uint8)
    assert find_watermark(image, references[SizeClass.SMALL], Point(220, 220)) == []

    noise = make_background(300, 300, value=128, noise=40.0, seed=2)
    assert find_watermark(noise, references[SizeClass.SMALL], Point(220, 220)) == []


def test_threshold_is_inclusive(watermarked, references):
    image, _ = watermarked(300, 300, SizeClass.SMALL, 200, 200, noise=0)
    template = references[SizeClass.SMALL]
    best = find_watermark(image, template, Point(200, 200), MatchConfig(threshold=-1.0))[0]

    config = MatchConfig(threshold=best.score)
    assert find_watermark(image, template, Point(200, 200), config) == [best]


def test_ties_keep_first_offset_in_row_major_order(references):
    """Two identical logos on a flat background score identically."""
    image = make_background(300, 300, noise=0)
    alpha = references[SizeClass.SMALL][..., 0].astype(np.float32) / 255.0
    composite_watermark(image, alpha, 100, 150)
    composite_watermark(image, alpha, 150, 100)

    matches = find_watermark(
        image, references[SizeClass.SMALL], Point(125, 125), MatchConfig(search_radius=60, step=1)
    )
    assert (matches[0].x, matches[0].y) == (150, 100)


def test_refine_recovers_exact_position(watermarked, references):
    image, _ = watermarked(400, 400, SizeClass.SMALL, 301, 287)
    template = references[SizeClass.SMALL]

    refined = refine_match(image, template, Match(300, 288, 0.8))
    assert (refined.x, refined.y) == (301, 287)
    assert refined.score >= 0.9


def test_refine_returns_best_even_below_threshold(references):
    """Refinement is exhaustive and has no threshold."""
    image = make_background(200, 200, value=128, noise=40.0, seed=3)
    refined = refine_match(image, references[SizeClass.SMALL], Match(100, 100, 0.75), radius=2)

    assert 98 <= refined.x <= 102
    assert 98 <= refined.y <= 102
    surface = score_surface(image, references[SizeClass.SMALL], Point(100, 100), 2)
    assert refined.score == pytest.approx(float(surface.scores.max()))
    assert refined.score < 0.7


def test_coarse_then_refine_on_odd_offset(watermarked, references):
    """Step 2 can miss an odd offset by one pixel; refinement closes the gap."""
    image, _ = watermarked(400, 400, SizeClass.SMALL, 317, 311)
    template = references[SizeClass.SMALL]

    coarse = find_watermark(image, template, Point(320, 320))[0]
    assert abs(coarse.x - 317) <= 1 and abs(coarse.y - 311) <= 1

    refined = refine_match(image, template, coarse)
    assert (refined.x, refined.y) == (317, 311)
