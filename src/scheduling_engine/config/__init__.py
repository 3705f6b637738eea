"""Configuration and dataset loaders."""

from .dataset import Dataset, DatasetLoader
from .loader import ConfigLoader, read_json

__all__ = [
    "ConfigLoader",
    "Dataset",
    "DatasetLoader",
    "read_json",
]
