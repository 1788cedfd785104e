"""Unit tests for settings and the language registry."""

import pytest
from pydantic import ValidationError

from codebridge.config import Settings
from codebridge.config.languages import (
    get_language,
    get_supported_languages,
    is_supported_language,
    normalize_language,
)


class TestLanguages:
    """Test the language registry."""

    @pytest.mark.parametrize("tag", ["python", "Python", " CPP ", "java"])
    def test_known_tags(self, tag):
        assert is_supported_language(tag)
        assert get_language(tag).code == normalize_language(tag)

    def test_unknown_tag(self):
        assert get_language("ruby") is None
        assert not is_supported_language(None)

    def test_supported_languages(self):
        assert get_supported_languages() == ["python", "cpp", "java"]

    def test_artifacts_include_source(self):
        for tag in get_supported_languages():
            language = get_language(tag)
            assert language.source_file in language.artifacts

    def test_image_defaults_to_tag(self):
        assert get_language("python").image == "python"


class TestSettings:
    """Test settings validation and helpers."""

    def test_enabled_languages_normalized(self):
        s = Settings(enabled_languages="Python, CPP")
        assert s.get_enabled_languages() == ["python", "cpp"]
        assert s.is_language_enabled("PYTHON")
        assert not s.is_language_enabled("java")

    @pytest.mark.parametrize("value", ["ruby", "python,go", " , "])
    def test_invalid_enabled_languages(self, value):
        with pytest.raises(ValidationError):
            Settings(enabled_languages=value)

    def test_log_level(self):
        assert Settings(log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            Settings(log_level="chatty")

    def test_mount_path_must_be_absolute(self):
        assert Settings(sandbox_mount_path="/code/").sandbox_mount_path == "/code"
        with pytest.raises(ValidationError):
            Settings(sandbox_mount_path="code")

    def test_resource_bounds(self):
        with pytest.raises(ValidationError):
            Settings(max_execution_time=0)

    def test_configuration_summary(self, test_settings):
        summary = test_settings.get_configuration_summary()
        assert summary["sandbox_runtime"] == "local"
        assert summary["rate_limit_enabled"] is False

    def test_settings_are_flat(self, test_settings):
        for name in ("api", "sandbox", "resources", "logging"):
            assert not hasattr(test_settings, name)
        assert test_settings.is_language_enabled("python")
