"""Orchestrator package - coordinates batch upload workflows."""
from .core import GalleryUploader
from .file_collector import CollectedFiles, FileCollector, PathEntry
from .queue import QueueController

__all__ = ["GalleryUploader", "QueueController", "FileCollector", "CollectedFiles", "PathEntry"]
