"""
Tests for config.py - Configuration management.
"""
import json

import pytest

from config import (
    DEFAULT_CONFIG,
    get_timeout,
    load_config,
    save_config,
    validate_config
)


@pytest.fixture
def usable_config(sample_config, fake_osascript):
    """Defaults pointed at an osascript that exists on any platform."""
    return {**sample_config, "osascript_path": str(fake_osascript)}


def test_default_config_structure():
    """Test that DEFAULT_CONFIG has expected keys."""
    assert "osascript_path" in DEFAULT_CONFIG
    assert "query_dialect" in DEFAULT_CONFIG
    assert "timeouts" in DEFAULT_CONFIG
    assert "body_batch_size" in DEFAULT_CONFIG
    assert "reconcile_batch_size" in DEFAULT_CONFIG
    assert DEFAULT_CONFIG["removed_folder_name"] == "Recently Deleted"


def test_default_timeouts_cover_every_query():
    """Every query the extractor issues has a default deadline."""
    for query in ("folder_names", "folder_listing", "folder_content", "export_init",
                  "folder_export", "folder_metadata", "body_batch", "index_batch",
                  "single_index", "note_detail", "create_note"):
        assert DEFAULT_CONFIG["timeouts"][query] > 0


def test_save_and_load_config(temp_dir, sample_config, monkeypatch):
    """Test saving and loading configuration."""
    config_file = temp_dir / "config.json"

    import config as config_module
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_file)

    sample_config["query_dialect"] = "jxa"
    sample_config["body_batch_size"] = 5
    save_config(sample_config)
    assert config_file.exists()

    loaded = load_config()
    assert loaded["query_dialect"] == "jxa"
    assert loaded["body_batch_size"] == 5


def test_load_config_creates_default(temp_dir, monkeypatch):
    """Test that load_config creates default config if missing."""
    config_file = temp_dir / "config.json"

    import config as config_module
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_file)

    assert not config_file.exists()

    config = load_config()

    assert config_file.exists()
    assert config["query_dialect"] == DEFAULT_CONFIG["query_dialect"]

    # Returned dict is a copy; editing it leaves the defaults alone
    config["timeouts"]["folder_names"] = 1
    assert DEFAULT_CONFIG["timeouts"]["folder_names"] != 1


def test_config_merge_with_defaults(temp_dir, monkeypatch):
    """Test that loading config merges with defaults for new keys."""
    config_file = temp_dir / "config.json"

    import config as config_module
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_file)

    config_file.write_text(json.dumps({"export_format": "md", "timeouts": {"folder_export": 900}}))

    loaded = load_config()
    assert loaded["export_format"] == "md"
    assert loaded["timeouts"]["folder_export"] == 900
    assert loaded["timeouts"]["body_batch"] == DEFAULT_CONFIG["timeouts"]["body_batch"]
    assert "reconcile_batch_size" in loaded


def test_get_timeout(sample_config):
    """Test that a configured timeout is returned as seconds."""
    sample_config["timeouts"]["note_detail"] = 12
    assert get_timeout(sample_config, "note_detail") == 12.0


def test_get_timeout_falls_back_to_default():
    """Test that missing timeouts fall back to the defaults."""
    assert get_timeout({"timeouts": {}}, "export_init") == float(DEFAULT_CONFIG["timeouts"]["export_init"])
    assert get_timeout({}, "body_batch") == float(DEFAULT_CONFIG["timeouts"]["body_batch"])


def test_validate_config_valid(usable_config):
    """Test validation passes for the defaults."""
    is_valid, error = validate_config(usable_config)
    assert is_valid
    assert error == ""


def test_validate_config_invalid_dialect(usable_config):
    """Test validation fails for an unknown query dialect."""
    config = {**usable_config, "query_dialect": "python"}
    is_valid, error = validate_config(config)
    assert not is_valid
    assert "Invalid query_dialect" in error


def test_validate_config_invalid_format(usable_config):
    """Test validation fails for an unknown export format."""
    config = {**usable_config, "export_format": "pdf"}
    is_valid, error = validate_config(config)
    assert not is_valid
    assert "Invalid export_format" in error


def test_validate_config_batch_size(usable_config):
    """Test validation fails for a non-positive batch size."""
    config = {**usable_config, "body_batch_size": 0}
    is_valid, error = validate_config(config)
    assert not is_valid
    assert "body_batch_size" in error


def test_validate_config_timeout(usable_config):
    """Test validation fails for a negative timeout."""
    config = {**usable_config, "timeouts": {**usable_config["timeouts"], "folder_export": -1}}
    is_valid, error = validate_config(config)
    assert not is_valid
    assert "folder_export" in error


def test_validate_config_removed_folder_name(usable_config):
    """Test validation fails without a removed-folder name."""
    config = {**usable_config, "removed_folder_name": ""}
    is_valid, error = validate_config(config)
    assert not is_valid


def test_validate_config_missing_osascript(usable_config, temp_dir):
    """Test validation fails off macOS, where osascript is absent."""
    config = {**usable_config, "osascript_path": str(temp_dir / "nope" / "osascript")}
    is_valid, error = validate_config(config)
    assert not is_valid
    assert "osascript not found" in error
