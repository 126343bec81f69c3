"""YAML configuration loading.

Safe YAML loading with ``yaml.safe_load`` so that untrusted configuration or
discovery files cannot instantiate arbitrary Python objects. Used by
[BaseService.from_yaml()][keepalive_monitor.core.base_service.BaseService.from_yaml]
and by the file-based discovery snapshot loader.

Examples:
    ```python
    from keepalive_monitor.core.yaml import load_yaml

    config = load_yaml("config/controller.yaml")
    ```
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError


def load_yaml(config_path: str | Path) -> dict[str, Any]:
    """Load and parse a YAML mapping from disk.

    Args:
        config_path: Path to the YAML file (absolute or relative).

    Returns:
        Parsed document as a dictionary. An empty file yields ``{}``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the file is not valid YAML or its top level
            is not a mapping.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with path.open(encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Expected a mapping at the top level of {config_path}, got {type(data).__name__}"
        )
    return data
