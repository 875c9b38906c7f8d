"""Book and session persistence."""

from .data_manager import DataManager, InMemoryDataManager, JsonFileDataManager

__all__ = ["DataManager", "InMemoryDataManager", "JsonFileDataManager"]
