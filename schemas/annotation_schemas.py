from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional


class VerseRangePayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    book_id: str = Field(..., min_length=1, max_length=100)
    chapter: int = Field(..., gt=0)
    verse_start: int = Field(..., gt=0)
    verse_end: Optional[int] = Field(None, gt=0)
    language_code: Optional[str] = Field(None, max_length=8)
    version_code: Optional[str] = Field(None, max_length=16)

    @model_validator(mode='after')
    def check_range_order(self):
        if self.verse_end is not None and self.verse_end < self.verse_start:
            raise ValueError('verse_end cannot be before verse_start')
        return self


class BookmarkPayload(VerseRangePayload):
    reference_label: Optional[str] = Field(None, max_length=255)
    excerpt: Optional[str] = None


class HighlightPayload(BookmarkPayload):
    color: Optional[str] = Field(None, max_length=32)


class NotePayload(BookmarkPayload):
    note: str

    @field_validator('note')
    @classmethod
    def note_not_blank(cls, value):
        if not value.strip():
            raise ValueError('Note cannot be empty')
        return value.strip()


class PlanCompletionPayload(BaseModel):
    date: Optional[str] = None
