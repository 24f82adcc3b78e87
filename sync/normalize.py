# sync/normalize.py
"""Turn loosely-typed rows (persisted JSON, cloud rows) into validated entries."""
import logging

from config import Config
from models import BookmarkEntry, HighlightEntry, NoteEntry, PlanProgress, PersonalStore, VerseRange
from sync.errors import EntryValidationError
from sync.identity import build_id_for_range
from sync.scope import resolve_row_scope
from utils.dates import parse_date_key, parse_timestamp, safe_iso

logger = logging.getLogger(__name__)


def _text(value, fallback=''):
    text = str(value).strip() if value is not None else ''
    return text or fallback


def _int(value, fallback=0):
    if value is None or value == '':
        return fallback
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return fallback


def _require_mapping(raw):
    if not isinstance(raw, dict):
        raise EntryValidationError(f"Expected an object, got {type(raw).__name__}")
    return raw


def parse_verse_range(row, chapter_key='chapter', start_key='verse_start', end_key='verse_end'):
    book_id = _text(row.get('book_id'))
    chapter = _int(row.get(chapter_key))
    verse_start = _int(row.get(start_key))
    verse_end = _int(row.get(end_key), verse_start)
    if not book_id:
        raise EntryValidationError("Entry has no book_id")
    if chapter <= 0 or verse_start <= 0 or verse_end <= 0:
        raise EntryValidationError(
            f"Entry {book_id} {chapter}:{verse_start}-{verse_end} has a non-positive chapter or verse"
        )
    if verse_end < verse_start:
        raise EntryValidationError(f"Entry {book_id} {chapter}:{verse_start}-{verse_end} ends before it starts")
    return VerseRange(book_id=book_id, chapter=chapter, verse_start=verse_start, verse_end=verse_end)


def _common_fields(row):
    row = _require_mapping(row)
    scope = resolve_row_scope(row)
    verse_range = parse_verse_range(row)
    return {
        'id': _text(row.get('id')) or build_id_for_range(scope, verse_range),
        'scope': scope,
        'range': verse_range,
        'reference_label': _text(row.get('reference_label')),
        'excerpt': _text(row.get('excerpt')),
        'created_at': safe_iso(row.get('created_at')),
    }


def bookmark_from_row(row):
    return BookmarkEntry(**_common_fields(row))


def highlight_from_row(row):
    fields = _common_fields(row)
    return HighlightEntry(color=_text(row.get('color'), Config.DEFAULT_HIGHLIGHT_COLOR), **fields)


def note_from_row(row):
    fields = _common_fields(row)
    note = _text(row.get('note'))
    if not note:
        raise EntryValidationError(f"Note {fields['id']} has no text")
    return NoteEntry(
        note=note,
        updated_at=safe_iso(row.get('updated_at')),
        **fields,
    )


def plan_progress_from_row(plan_id, row):
    row = _require_mapping(row)
    plan_id = _text(plan_id)
    if not plan_id:
        raise EntryValidationError("Plan progress has no plan_id")

    raw_dates = row.get('completed_dates')
    if not isinstance(raw_dates, (list, tuple, set)):
        raw_dates = []
    dates = set()
    for value in raw_dates:
        date_key = parse_date_key(value)
        if date_key is None:
            logger.warning(f"Dropping unparsable completed date {value!r} from plan {plan_id}")
            continue
        dates.add(date_key)

    last_completed_at = row.get('last_completed_at')
    parsed = parse_timestamp(last_completed_at)
    return PlanProgress(
        plan_id=plan_id,
        completed_dates=sorted(dates),
        last_completed_at=parsed.isoformat() if parsed else None,
    )


def normalize_entries(rows, factory, source):
    """Map each row through ``factory``, dropping (and logging) the rows that fail validation."""
    if not isinstance(rows, (list, tuple)):
        return []
    entries = []
    seen = set()
    for row in rows:
        try:
            entry = factory(row)
        except EntryValidationError as e:
            logger.warning(f"Dropping invalid {source} row: {e}")
            continue
        if entry.id in seen:
            continue
        seen.add(entry.id)
        entries.append(entry)
    return entries


def normalize_plan_progress(raw_progress, source):
    if not isinstance(raw_progress, dict):
        return {}
    progress = {}
    for plan_id, row in raw_progress.items():
        try:
            plan = plan_progress_from_row(plan_id, row)
        except EntryValidationError as e:
            logger.warning(f"Dropping invalid {source} plan progress: {e}")
            continue
        progress[plan.plan_id] = plan
    return progress


def store_from_dict(data, source='stored'):
    if not isinstance(data, dict):
        return PersonalStore.empty()
    return PersonalStore(
        bookmarks=normalize_entries(data.get('bookmarks'), bookmark_from_row, f"{source} bookmark"),
        highlights=normalize_entries(data.get('highlights'), highlight_from_row, f"{source} highlight"),
        notes=normalize_entries(data.get('notes'), note_from_row, f"{source} note"),
        plan_progress=normalize_plan_progress(data.get('plan_progress'), source),
    )
