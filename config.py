#!/usr/bin/env python3
"""
Configuration management for the Notes extraction system.

Handles the osascript location, query timeouts, batch sizes and export defaults.
"""
import json
import shutil
from pathlib import Path

CONFIG_FILE = Path(__file__).parent / "config.json"

DEFAULT_CONFIG = {
    "osascript_path": "/usr/bin/osascript",
    "query_dialect": "applescript",   # "applescript" or "jxa" for name-keyed queries

    # Seconds before an osascript invocation is terminated
    "timeouts": {
        "folder_names": 45,
        "folder_listing": 90,
        "folder_content": 360,
        "export_init": 120,
        "folder_export": 600,
        "folder_metadata": 120,
        "body_batch": 300,
        "index_batch": 300,
        "single_index": 60,
        "note_detail": 45,
        "create_note": 45
    },

    "body_batch_size": 20,
    "reconcile_batch_size": 10,
    "removed_folder_name": "Recently Deleted",
    "import_folder_name": "Imported",

    "export_format": "txt",           # "txt", "md", or "json"
    "output_dir": "data/export",
    "preserve_folders": True
}

VALID_DIALECTS = ("applescript", "jxa")
VALID_FORMATS = ("txt", "md", "json")


def load_config() -> dict:
    """
    Load configuration from config.json.
    Creates file with defaults if it doesn't exist.
    """
    if CONFIG_FILE.exists():
        with open(CONFIG_FILE, 'r') as f:
            config = json.load(f)
        # Merge with defaults to handle new config options
        merged = {**DEFAULT_CONFIG, **config}
        merged["timeouts"] = {**DEFAULT_CONFIG["timeouts"], **config.get("timeouts", {})}
        return merged
    else:
        save_config(DEFAULT_CONFIG)
        return json.loads(json.dumps(DEFAULT_CONFIG))


def save_config(config: dict) -> None:
    """Save configuration to config.json."""
    with open(CONFIG_FILE, 'w') as f:
        json.dump(config, f, indent=2)


def get_timeout(config: dict, query: str) -> float:
    """Timeout in seconds for a named query, falling back to the defaults."""
    timeouts = config.get("timeouts") or {}
    return float(timeouts.get(query, DEFAULT_CONFIG["timeouts"][query]))


def validate_config(config: dict = None) -> tuple[bool, str]:
    """
    Validate configuration is complete and usable.
    Returns (is_valid, error_message).
    """
    if config is None:
        config = load_config()

    dialect = config.get("query_dialect")
    if dialect not in VALID_DIALECTS:
        return False, f"Invalid query_dialect: {dialect}. Must be 'applescript' or 'jxa'"

    export_format = config.get("export_format")
    if export_format not in VALID_FORMATS:
        return False, f"Invalid export_format: {export_format}. Must be 'txt', 'md', or 'json'"

    for key in ("body_batch_size", "reconcile_batch_size"):
        value = config.get(key)
        if not isinstance(value, int) or value < 1:
            return False, f"{key} must be a positive integer"

    for name, seconds in (config.get("timeouts") or {}).items():
        if not isinstance(seconds, (int, float)) or seconds <= 0:
            return False, f"Timeout for {name} must be a positive number of seconds"

    if not config.get("removed_folder_name"):
        return False, "removed_folder_name must not be empty"

    osascript = config.get("osascript_path", "")
    if not (Path(osascript).exists() or shutil.which(osascript)):
        return False, f"osascript not found at {osascript}. Notes automation requires macOS."

    return True, ""


if __name__ == "__main__":
    # Show current config when run directly
    config = load_config()
    print("Current configuration:")
    print(json.dumps(config, indent=2))

    is_valid, error = validate_config(config)
    if is_valid:
        print("\nConfiguration is valid.")
    else:
        print(f"\nConfiguration error: {error}")
