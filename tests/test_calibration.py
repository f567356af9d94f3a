"""Tests for calibration reference loading and alpha map derivation."""

import threading
import urllib.request
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest
from PIL import Image

from unlogo import calibration
from unlogo.calibration import (
    AlphaMapCache, CalibrationError, alpha_from_background_pair, alpha_from_reference,
    fetch_reference_assets, load_reference, load_references, reference_filename,
    resolve_assets_dir
)
from unlogo.geometry import SizeClass
from conftest import sparkle_alpha


def test_alpha_from_reference_reads_brightest_channel():
    reference = np.zeros((2, 2, 4), dtype=np.uint8)
    reference[0, 0, :3] = (255, 0, 0)
    reference[0, 1, :3] = (10, 51, 20)
    reference[1, 0, 3] = 255  # alpha channel must not count

    alpha = alpha_from_reference(reference)
    assert alpha.dtype == np.float32
    np.testing.assert_allclose(alpha, [[1.0, 0.2], [0.0, 0.0]], atol=1e-6)


def test_alpha_from_background_pair_recovers_opacity():
    """Two captures determine alpha without knowing the logo colour."""
    alpha = sparkle_alpha(48, peak=0.8)
    foreground = np.array([200.0, 180.0, 255.0])
    a = alpha[..., np.newaxis]
    on_black = np.rint(a * foreground).astype(np.uint8)
    on_white = np.rint(a * foreground + (1 - a) * 255).astype(np.uint8)

    recovered = alpha_from_background_pair(on_black, on_white)
    assert recovered.shape == (48, 48)
    np.testing.assert_allclose(recovered, alpha, atol=0.005)


def test_alpha_from_background_pair_rejects_mismatched_sizes():
    with pytest.raises(ValueError, match="Captures differ in size"):
        alpha_from_background_pair(np.zeros((48, 48, 3), np.uint8), np.zeros((96, 96, 3), np.uint8))


def test_load_references(assets_dir, references):
    loaded = load_references(assets_dir)
    assert set(loaded) == set(SizeClass)
    for size_class, reference in loaded.items():
        assert reference.shape == (size_class.size, size_class.size, 4)
        np.testing.assert_array_equal(reference, references[size_class])


def test_load_reference_missing_file(tmp_path):
    with pytest.raises(CalibrationError, match="not found"):
        load_reference(tmp_path / "bg_48.png", SizeClass.SMALL)


def test_load_reference_undecodable_file(tmp_path):
    path = tmp_path / "bg_48.png"
    path.write_bytes(b"definitely not a png")
    with pytest.raises(CalibrationError, match="Could not decode"):
        load_reference(path, SizeClass.SMALL)


def test_load_reference_wrong_size(tmp_path):
    path = tmp_path / "bg_96.png"
    Image.new("RGB", (48, 48)).save(path)
    with pytest.raises(CalibrationError, match="expected 96×96"):
        load_reference(path, SizeClass.LARGE)


def test_load_reference_converts_rgb_to_rgba(tmp_path):
    path = tmp_path / "bg_48.png"
    Image.new("RGB", (48, 48), (30, 60, 90)).save(path)
    reference = load_reference(path, SizeClass.SMALL)
    assert reference.shape == (48, 48, 4)
    assert tuple(reference[0, 0]) == (30, 60, 90, 255)


def test_resolve_assets_dir_prefers_explicit_then_env(assets_dir, tmp_path, monkeypatch):
    explicit = tmp_path / "elsewhere"
    assert resolve_assets_dir(explicit) == explicit

    monkeypatch.setenv(calibration.ASSETS_ENV_VAR, str(assets_dir))
    assert resolve_assets_dir() == assets_dir


def test_resolve_assets_dir_skips_incomplete_candidates(assets_dir, tmp_path, monkeypatch):
    incomplete = tmp_path / "incomplete"
    incomplete.mkdir()
    (incomplete / "bg_48.png").write_bytes((assets_dir / "bg_48.png").read_bytes())

    monkeypatch.setenv(calibration.ASSETS_ENV_VAR, str(incomplete))
    monkeypatch.setattr(calibration, "PACKAGE_ASSETS_DIR", tmp_path / "empty")
    monkeypatch.setattr(calibration, "USER_ASSETS_DIR", assets_dir)
    assert resolve_assets_dir() == assets_dir


def test_fetch_reference_assets(tmp_path, monkeypatch):
    downloaded = []

    def fake_urlretrieve(url, path):
        downloaded.append(url)
        Image.new("RGB", (8, 8)).save(path)

    monkeypatch.setattr(urllib.request, "urlretrieve", fake_urlretrieve)

    dest = fetch_reference_assets(tmp_path / "cache")
    assert sorted(p.name for p in dest.iterdir()) == ["bg_48.png", "bg_96.png"]
    assert len(downloaded) == 2

    # Existing files are kept unless overwrite is requested
    fetch_reference_assets(dest)
    assert len(downloaded) == 2
    fetch_reference_assets(dest, overwrite=True)
    assert len(downloaded) == 4


def test_fetch_reference_assets_wraps_download_errors(tmp_path, monkeypatch):
    def failing_urlretrieve(url, path):
        raise OSError("network unreachable")

    monkeypatch.setattr(urllib.request, "urlretrieve", failing_urlretrieve)
    with pytest.raises(CalibrationError, match="Failed to download"):
        fetch_reference_assets(tmp_path)


def test_alpha_map_cache_computes_once(references):
    calls = []

    def derive(reference):
        calls.append(reference.shape)
        return alpha_from_reference(reference)

    cache = AlphaMapCache(references, derive)
    assert SizeClass.SMALL not in cache

    first = cache.get(SizeClass.SMALL)
    second = cache.get(SizeClass.SMALL)
    assert first is second
    assert SizeClass.SMALL in cache
    assert calls == [(48, 48, 4)]

    cache.get(SizeClass.LARGE)
    assert calls == [(48, 48, 4), (96, 96, 4)]


def test_alpha_map_cache_is_read_only(references):
    alpha = AlphaMapCache(references).get(SizeClass.LARGE)
    with pytest.raises(ValueError):
        alpha[0, 0] = 0.5


def test_alpha_map_cache_concurrent_first_access(references):
    """Racing first requests share one computation and one result."""
    calls = []
    gate = threading.Barrier(8)

    def derive(reference):
        calls.append(1)
        return alpha_from_reference(reference)

    cache = AlphaMapCache(references, derive)

    def worker():
        gate.wait()
        return cache.get(SizeClass.LARGE)

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(lambda _: worker(), range(8)))

    assert len(calls) == 1
    assert all(result is results[0] for result in results)


def test_reference_filename():
    assert reference_filename(SizeClass.SMALL) == "bg_48.png"
    assert reference_filename(SizeClass.LARGE) == "bg_96.png"
