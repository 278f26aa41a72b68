"""Data models and configuration.

Pydantic models and configuration:
- models: Extension descriptors, content graph entities, updates, history
- report: Sync run report
- config: Centralized configuration (Pydantic Settings)
"""

from models.config import get_data_path, settings
from models.models import Chapter, ExtensionDescriptor, Manga, Page, Update

__all__ = [
    "Chapter",
    "ExtensionDescriptor",
    "Manga",
    "Page",
    "Update",
    "settings",
    "get_data_path",
]
