# models/annotations.py
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True)
class AnnotationScope:
    """Text edition an annotation belongs to, e.g. ('id', 'TB1')."""
    language_code: str
    version_code: str


@dataclass(frozen=True)
class VerseRange:
    book_id: str
    chapter: int
    verse_start: int
    verse_end: int

    def verse_numbers(self):
        return list(range(self.verse_start, self.verse_end + 1))

    @property
    def label(self):
        if self.verse_start == self.verse_end:
            return f"{self.chapter}:{self.verse_start}"
        return f"{self.chapter}:{self.verse_start}-{self.verse_end}"

    def contains(self, verse_number):
        return self.verse_start <= verse_number <= self.verse_end


@dataclass
class BookmarkEntry:
    id: str
    scope: AnnotationScope
    range: VerseRange
    reference_label: str = ''
    excerpt: str = ''
    created_at: str = ''

    @property
    def last_modified(self):
        return self.created_at

    def to_dict(self):
        return {
            'id': self.id,
            'language_code': self.scope.language_code,
            'version_code': self.scope.version_code,
            'book_id': self.range.book_id,
            'chapter': self.range.chapter,
            'verse_start': self.range.verse_start,
            'verse_end': self.range.verse_end,
            'reference_label': self.reference_label,
            'excerpt': self.excerpt,
            'created_at': self.created_at,
        }


@dataclass
class HighlightEntry(BookmarkEntry):
    color: str = '#FDE68A'

    def to_dict(self):
        data = super().to_dict()
        data['color'] = self.color
        return data


@dataclass
class NoteEntry(BookmarkEntry):
    note: str = ''
    updated_at: str = ''

    @property
    def last_modified(self):
        return self.updated_at or self.created_at

    def to_dict(self):
        data = super().to_dict()
        data['note'] = self.note
        data['updated_at'] = self.updated_at
        return data


@dataclass
class PlanProgress:
    plan_id: str
    completed_dates: List[str] = field(default_factory=list)
    last_completed_at: Optional[str] = None

    def to_dict(self):
        return {
            'completed_dates': list(self.completed_dates),
            'last_completed_at': self.last_completed_at,
        }


@dataclass
class PersonalStore:
    bookmarks: List[BookmarkEntry] = field(default_factory=list)
    highlights: List[HighlightEntry] = field(default_factory=list)
    notes: List[NoteEntry] = field(default_factory=list)
    plan_progress: Dict[str, PlanProgress] = field(default_factory=dict)

    @classmethod
    def empty(cls):
        return cls()

    def is_empty(self):
        return not (self.bookmarks or self.highlights or self.notes or self.plan_progress)

    def to_dict(self):
        return {
            'bookmarks': [entry.to_dict() for entry in self.bookmarks],
            'highlights': [entry.to_dict() for entry in self.highlights],
            'notes': [entry.to_dict() for entry in self.notes],
            'plan_progress': {
                plan_id: progress.to_dict()
                for plan_id, progress in self.plan_progress.items()
            },
        }
