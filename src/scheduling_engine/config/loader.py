"""Unified configuration loader."""

import json
import logging
from pathlib import Path
from typing import Any

from ..daily.models import DailyDataUpdateConfig
from ..exceptions import ValidationError
from ..matching.models import MatchingConfig
from ..models import SchedulingAlgorithmConfig

logger = logging.getLogger(__name__)

ALGORITHM_FILE = "algorithm.json"
MATCHING_FILE = "matching.json"
DAILY_UPDATE_FILE = "daily-update.json"


def read_json(path: Path) -> Any:
    """
    Read a JSON file.

    Raises:
        ValidationError: If the file is not valid JSON
    """
    with open(path, encoding="utf-8") as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as e:
            raise ValidationError(
                f"Invalid JSON in {path.name}: {e.msg} (line {e.lineno})",
                code="INVALID_CONFIG",
                details={"path": str(path)},
            ) from e


class ConfigLoader:
    """Unified loader for all engine configuration files."""

    def __init__(self, config_dir: Path | None = None):
        """
        Initialize configuration loader.

        Args:
            config_dir: Path to directory containing configuration files.
                       Expected files, each optional:
                       - algorithm.json
                       - matching.json
                       - daily-update.json
                       Missing files fall back to the built-in defaults.
        """
        if config_dir is None:
            config_dir = Path("config")

        self.config_dir = Path(config_dir)

        self.algorithm = self._load(ALGORITHM_FILE, SchedulingAlgorithmConfig)
        self.matching = self._load(MATCHING_FILE, MatchingConfig)
        self.daily_update = self._load(DAILY_UPDATE_FILE, DailyDataUpdateConfig)

    def _load(self, filename: str, config_class):
        path = self._get_path(filename)
        if path is None:
            logger.debug(f"{filename} not found in {self.config_dir}, using defaults")
            return config_class()
        data = read_json(path)
        if not isinstance(data, dict):
            raise ValidationError(f"{filename} must contain a JSON object", code="INVALID_CONFIG")
        logger.info(f"Loaded {filename} from {self.config_dir}")
        return config_class.from_dict(data)

    def _get_path(self, filename: str) -> Path | None:
        """Get path to config file if it exists."""
        path = self.config_dir / filename
        return path if path.exists() else None
