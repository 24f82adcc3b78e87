# This file makes the models directory a Python package
from .annotations import (
    AnnotationScope,
    VerseRange,
    BookmarkEntry,
    HighlightEntry,
    NoteEntry,
    PlanProgress,
    PersonalStore,
)

__all__ = [
    'AnnotationScope',
    'VerseRange',
    'BookmarkEntry',
    'HighlightEntry',
    'NoteEntry',
    'PlanProgress',
    'PersonalStore',
]
