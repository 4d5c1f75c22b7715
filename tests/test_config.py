"""
Tests for configuration parsing helpers.
"""

import pytest

from sentinel_cam.config import (
    RESOLUTIONS,
    Config,
    _env_bool,
    _env_int,
    resolve_resolution,
)


class TestEnvParsing:
    """Tests for forgiving environment parsing."""

    def test_env_int_with_comment(self, monkeypatch):
        """Leading integers are extracted from annotated values."""
        monkeypatch.setenv("SENTINEL_TEST_INT", '"45000 # slower"')

        assert _env_int("SENTINEL_TEST_INT", 1) == 45000

    def test_env_int_fallback(self, monkeypatch):
        """Unparseable or missing values fall back to the default."""
        monkeypatch.setenv("SENTINEL_TEST_INT", "soon")

        assert _env_int("SENTINEL_TEST_INT", 7) == 7
        assert _env_int("SENTINEL_TEST_MISSING", 9) == 9

    @pytest.mark.parametrize("raw,expected", [("1", True), ("on", True), ("0", False), ("false", False), ("maybe", True)])
    def test_env_bool(self, monkeypatch, raw, expected):
        """Switch values parse leniently; junk keeps the default."""
        monkeypatch.setenv("SENTINEL_TEST_BOOL", raw)

        assert _env_bool("SENTINEL_TEST_BOOL", True) is expected


class TestResolutions:
    """Tests for capture resolution presets."""

    def test_presets(self):
        """The three presets carry their pixel sizes."""
        assert RESOLUTIONS["HD"].size == (1280, 720)
        assert RESOLUTIONS["FHD"].size == (1920, 1080)
        assert RESOLUTIONS["UHD"].size == (3840, 2160)

    def test_resolve_is_case_insensitive(self):
        """Keys are matched regardless of case."""
        assert resolve_resolution("fhd") is RESOLUTIONS["FHD"]

    def test_resolve_unknown(self):
        """Unknown keys are rejected."""
        with pytest.raises(ValueError):
            resolve_resolution("8K")


class TestDefaults:
    """Tests for configuration invariants."""

    def test_interval_bounds(self):
        """The base interval never exceeds the fixed maximum."""
        assert Config.MAX_INTERVAL_MS == 300_000
        assert 0 < Config.BASE_INTERVAL_MS <= Config.MAX_INTERVAL_MS

    def test_sensitivity_range(self):
        """Sensitivity is kept within 0-100."""
        assert 0 <= Config.SENSITIVITY <= 100
