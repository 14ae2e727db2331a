"""
Tests for configuration and region types.
"""

import json

import pytest

from image_anonymizer.config import (
    AnonymizerConfig,
    Category,
    ClassificationConfig,
    DetectionConfig,
    MergeConfig,
    RedactionConfig,
    Region,
    RegionSource,
    load_config,
    normalize_literals,
)
from image_anonymizer.exceptions import InvalidRegion


class TestAnonymizerConfig:
    """Test configuration defaults and loading."""

    def test_default_config(self, monkeypatch):
        """Test default configuration values."""
        monkeypatch.delenv("GEMINI_MODEL", raising=False)
        config = AnonymizerConfig()

        assert config.redaction.mask_color == (255, 0, 255)
        assert config.redaction.mosaic_block_size == 16
        assert config.detection.min_region_area == 4
        assert config.detection.enable_face_masking is True
        assert config.merge.touch_tolerance == 1
        assert config.vision.max_results == 100
        assert config.classification.model == "gemini-2.0-flash-lite"
        assert config.classification.enabled_categories == [
            Category.EMAIL, Category.PHONE, Category.CREDIT_CARD, Category.API_KEY
        ]
        assert config.user_literals == []

    def test_model_from_environment(self, monkeypatch):
        monkeypatch.setenv("GEMINI_MODEL", "gemini-custom")

        assert ClassificationConfig().model == "gemini-custom"

    def test_from_dict(self):
        config = AnonymizerConfig.from_dict({
            "classification": {"enabled_categories": ["email", "phone"], "mask_company_names": False},
            "redaction": {"mask_color": [0, 0, 0], "mosaic_block_size": 8},
            "user_literals": ["Acme", " acme "],
            "log_level": "DEBUG",
        })

        assert config.classification.enabled_categories == [Category.EMAIL, Category.PHONE]
        assert config.classification.mask_company_names is False
        assert config.redaction.mask_color == (0, 0, 0)
        assert config.redaction.mosaic_block_size == 8
        assert config.user_literals == ["Acme"]
        assert config.log_level == "DEBUG"

    def test_unknown_section(self):
        with pytest.raises(ValueError, match="Unknown configuration section"):
            AnonymizerConfig.from_dict({"ocr": {}})

    def test_unknown_setting(self):
        with pytest.raises(ValueError, match="redaction"):
            AnonymizerConfig.from_dict({"redaction": {"blur_strength": 3}})

    def test_log_level(self):
        assert AnonymizerConfig(log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValueError):
            AnonymizerConfig(log_level="loud")

    def test_unknown_category(self):
        with pytest.raises(ValueError):
            ClassificationConfig(enabled_categories=["aadhaar"])

    def test_invalid_values(self):
        with pytest.raises(ValueError):
            RedactionConfig(mask_color=(300, 0, 0))
        with pytest.raises(ValueError):
            RedactionConfig(mask_color=(1, 2))
        with pytest.raises(ValueError):
            RedactionConfig(mosaic_block_size=0)
        with pytest.raises(ValueError):
            DetectionConfig(min_region_area=-1)
        with pytest.raises(ValueError):
            MergeConfig(touch_tolerance=-1)
        with pytest.raises(ValueError):
            ClassificationConfig(api_key_min_run_ratio=1.5)

    def test_load_config_defaults(self):
        assert load_config(None) == AnonymizerConfig()

    def test_load_config_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"detection": {"enable_face_masking": False}}))

        config = load_config(path)

        assert config.detection.enable_face_masking is False

    def test_load_config_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.json")


class TestNormalizeLiterals:
    """Test user literal cleanup."""

    def test_trims_and_deduplicates(self):
        assert normalize_literals([" Acme ", "acme", "", "   ", "Beta"]) == ["Acme", "Beta"]

    def test_none(self):
        assert normalize_literals(None) == []


class TestRegion:
    """Test region invariants and helpers."""

    def test_geometry(self):
        region = Region(x=10, y=20, width=30, height=40, source=RegionSource.OCR_TEXT, text="x")

        assert region.bbox == (10, 20, 40, 60)
        assert region.area == 1200

    def test_empty_region_rejected(self):
        with pytest.raises(InvalidRegion):
            Region(x=0, y=0, width=0, height=10, source=RegionSource.OCR_TEXT)
        with pytest.raises(InvalidRegion):
            Region(x=0, y=0, width=10, height=-1, source=RegionSource.OCR_TEXT)

    def test_faces_must_be_sensitive(self):
        with pytest.raises(ValueError):
            Region(x=0, y=0, width=10, height=10, source=RegionSource.FACE)
        with pytest.raises(ValueError):
            Region(x=0, y=0, width=10, height=10, source=RegionSource.USER_LITERAL, sensitive=False)

    def test_clamp(self):
        region = Region(x=-5, y=90, width=20, height=20, source=RegionSource.OCR_TEXT, text="x")

        clamped = region.clamp(100, 100)

        assert clamped.bbox == (0, 90, 15, 100)
        assert clamped.text == "x"

    def test_clamp_inside_is_noop(self):
        region = Region(x=5, y=5, width=10, height=10, source=RegionSource.OCR_TEXT)

        assert region.clamp(100, 100) is region

    def test_clamp_outside_rejected(self):
        region = Region(x=120, y=5, width=10, height=10, source=RegionSource.OCR_TEXT)

        with pytest.raises(InvalidRegion):
            region.clamp(100, 100)

    def test_classified_returns_new_region(self):
        region = Region(x=0, y=0, width=10, height=10, source=RegionSource.OCR_TEXT, text="a@b.com")

        result = region.classified(True, Category.EMAIL)

        assert result.sensitive is True
        assert result.category is Category.EMAIL
        assert region.sensitive is None

    def test_dict_conversion(self):
        region = Region(x=1, y=2, width=3, height=4, source=RegionSource.OCR_TEXT,
                        text="555-1234", sensitive=True, category=Category.PHONE)

        data = region.to_dict()

        assert data == {
            "bbox": [1, 2, 3, 4],
            "source": "ocr_text",
            "sensitive": True,
            "category": "phone",
        }
