"""
config.py - Configuration loader for the DICOM catalog engine.

Loads settings from config.yaml with built-in defaults so that scan
cadence, preview limits and the dictionary source are not hard-coded
inside the modules that use them.
"""

import os
import yaml
from typing import Any

# Resolve the config file relative to the repo root, not the CWD,
# so imports work regardless of where the script is launched from.
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
_CONFIG_PATH = os.path.join(_REPO_ROOT, "config.yaml")

_DEFAULTS: dict[str, Any] = {
    "scan": {
        "progress_every": 50,
        "min_file_bytes": 64,
        # Only Part 10 files (128-byte preamble + "DICM") are indexed.
        "force": False,
    },
    "headers": {
        "preview_max_chars": 120,
        "max_depth": 128,
    },
    "dictionary": {
        "package": None,
        "resources": [
            "public.json",
            "full.json",
            "dist/public.json",
            "dist/full.json",
            "data/public.json",
            "data/full.json",
            "index.json",
        ],
        "module": "pydicom._dicom_dict",
        "attribute": "DicomDictionary",
    },
    "jobs": {
        "max_workers": 4,
    },
    "logging": {
        "level": "INFO",
        "format": "%(levelname)-8s %(message)s",
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base*, returning a new dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_path: str = _CONFIG_PATH) -> dict[str, Any]:
    """
    Load the YAML configuration file and merge it with built-in defaults.

    Parameters
    ----------
    config_path : str
        Path to config.yaml. Defaults to the repo-root config.yaml.

    Returns
    -------
    dict
        Merged configuration dictionary.
    """
    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            user_config = yaml.safe_load(f) or {}
    else:
        user_config = {}

    return _deep_merge(_DEFAULTS, user_config)


# Module-level singleton so callers can just do `from dicom_catalog.config import CONFIG`
CONFIG = load_config()
