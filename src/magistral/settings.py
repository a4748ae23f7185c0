# magistral: Optional per-workspace YAML settings (api overrides, HTTP dump switch).

from __future__ import annotations

import pathlib
from typing import Any, Dict

import yaml

SETTINGS_NAMES = ("settings.yaml", "settings.yml")


def load_settings(root: pathlib.Path) -> Dict[str, Any]:
    """
    Read <root>/.magistral/settings.yaml (or .yml, first one present wins).

    Settings are advisory: a missing file, broken YAML or a top level that is not
    a mapping all come back as {} instead of raising.
    """
    folder = pathlib.Path(root) / ".magistral"
    for name in SETTINGS_NAMES:
        candidate = folder / name
        if not candidate.is_file():
            continue
        try:
            loaded = yaml.safe_load(candidate.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError):
            return {}
        return loaded if isinstance(loaded, dict) else {}
    return {}
