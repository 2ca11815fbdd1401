"""In-memory library model."""

from reelshelf.library.model import LibraryModel, apply_edits, renumber

__all__ = ["LibraryModel", "apply_edits", "renumber"]
