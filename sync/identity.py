# sync/identity.py
"""Entry identity: a stable, reversible key for a (scope, verse range) pair.

Ids look like ``id:TB1:JHN:3:16:17``. They are shared with the web and
mobile clients, so the format cannot change. Parsing takes the first two
fields as the scope and the last three as chapter and verses; whatever
sits in between is the book id. Scope fields come out of the resolver and
never contain the delimiter, so a book id that does contain it still
round-trips.
"""
from models import AnnotationScope, VerseRange
from sync.scope import resolve_scope

ID_DELIMITER = ':'


def build_entry_id(scope, book_id, chapter, verse_start, verse_end=None):
    if verse_end is None:
        verse_end = verse_start
    if isinstance(scope, AnnotationScope):
        scope = resolve_scope(scope.language_code, scope.version_code)
    else:
        scope = resolve_scope(*scope)
    return ID_DELIMITER.join(str(part) for part in (
        scope.language_code,
        scope.version_code,
        book_id,
        int(chapter),
        int(verse_start),
        int(verse_end),
    ))


def build_id_for_range(scope, verse_range):
    return build_entry_id(
        scope,
        verse_range.book_id,
        verse_range.chapter,
        verse_range.verse_start,
        verse_range.verse_end,
    )


def _positive_int(text):
    try:
        value = int(text)
    except (TypeError, ValueError):
        return 0
    return value if value > 0 else 0


def parse_entry_id(entry_id):
    """Recover (scope, range) from an entry id, or None if it is not a scope-aware id."""
    parts = str(entry_id or '').strip().split(ID_DELIMITER)
    if len(parts) < 6:
        return None

    chapter = _positive_int(parts[-3])
    verse_start = _positive_int(parts[-2])
    verse_end = _positive_int(parts[-1])
    book_id = ID_DELIMITER.join(parts[2:-3]).strip()
    if not book_id or not chapter or not verse_start or not verse_end:
        return None

    scope = resolve_scope(parts[0], parts[1])
    return scope, VerseRange(
        book_id=book_id,
        chapter=chapter,
        verse_start=verse_start,
        verse_end=max(verse_start, verse_end),
    )
