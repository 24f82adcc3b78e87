# sync/cloud.py
"""Cloud side of personal annotation sync.

The shared store may expose one of three table shapes, tried in order:

* scoped  - one row per entry, mirroring the in-memory entry
* legacy  - scoped without language_code/version_code
* mobile  - one row per verse (chapter_number, verse_number), no ranges

Reads fall through the shapes on schema-compatibility failures only. Writes
go to the scoped shape and fall back to expanding the range into mobile
rows. Any other failure is reported, never mistaken for an empty cloud.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple

from config import Config
from models import PersonalStore
from sync.errors import CloudError, CloudRowNotFound, SchemaCompatibilityError
from sync.identity import parse_entry_id
from sync.normalize import (
    bookmark_from_row,
    highlight_from_row,
    normalize_entries,
    note_from_row,
    plan_progress_from_row,
)
from sync.scope import resolve_row_scope
from utils.dates import parse_timestamp, safe_iso, timestamp_sort_key, utc_now_iso

logger = logging.getLogger(__name__)

RANGE_COLUMNS = ('id', 'book_id', 'chapter', 'verse_start', 'verse_end')
SCOPE_COLUMNS = ('language_code', 'version_code')
MOBILE_KEY_COLUMNS = ('book_id', 'chapter_number', 'verse_number', 'language_code', 'version_code')
MOBILE_CONFLICT_KEY = 'user_id,language_code,version_code,book_id,chapter_number,verse_number'
ENTRY_CONFLICT_KEY = 'user_id,id'
PLAN_CONFLICT_KEY = 'user_id,plan_id'
PLAN_COLUMNS = ('plan_id', 'completed_dates', 'last_completed_at')


@dataclass(frozen=True)
class AnnotationTable:
    kind: str
    name: str
    from_row: Callable
    payload_columns: Tuple[str, ...] = ()
    mobile_payload_columns: Tuple[str, ...] = ()

    @property
    def scoped_columns(self):
        return RANGE_COLUMNS + SCOPE_COLUMNS + ('reference_label', 'excerpt') + self.payload_columns + ('created_at',)

    @property
    def legacy_columns(self):
        return tuple(column for column in self.scoped_columns if column not in SCOPE_COLUMNS)

    @property
    def mobile_columns(self):
        return MOBILE_KEY_COLUMNS + self.mobile_payload_columns + ('created_at',)


BOOKMARKS = AnnotationTable('bookmark', Config.BOOKMARKS_TABLE, bookmark_from_row)
HIGHLIGHTS = AnnotationTable(
    'highlight', Config.HIGHLIGHTS_TABLE, highlight_from_row,
    payload_columns=('color',), mobile_payload_columns=('color',),
)
NOTES = AnnotationTable(
    'note', Config.NOTES_TABLE, note_from_row,
    payload_columns=('note', 'updated_at'), mobile_payload_columns=('note', 'updated_at'),
)


@dataclass
class CloudSnapshot:
    supported: bool
    store: PersonalStore = field(default_factory=PersonalStore.empty)
    reason: Optional[str] = None


def mobile_version_code(scope):
    # The mobile app spells the default Indonesian edition "TB"
    if scope.language_code == 'id' and scope.version_code == 'TB1':
        return 'TB'
    return scope.version_code


def mobile_version_candidates(scope):
    if scope.language_code == 'id' and scope.version_code == 'TB1':
        return ['TB1', 'TB']
    return [scope.version_code]


def chunked(values, size):
    for index in range(0, len(values), size):
        yield values[index:index + size]


def expand_to_mobile_rows(user_id, table, entry):
    """One mobile-shape row per verse covered by the entry's range."""
    base = {
        'user_id': user_id,
        'language_code': entry.scope.language_code,
        'version_code': mobile_version_code(entry.scope),
        'book_id': entry.range.book_id,
        'chapter_number': entry.range.chapter,
        'created_at': entry.created_at,
    }
    entry_data = entry.to_dict()
    for column in table.mobile_payload_columns:
        base[column] = entry_data[column]
    return [dict(base, verse_number=verse) for verse in entry.range.verse_numbers()]


def _verse_runs(verses):
    """Split sorted verse numbers into runs of consecutive numbers."""
    runs = []
    for verse in verses:
        if runs and verse == runs[-1][-1] + 1:
            runs[-1].append(verse)
        elif not runs or verse != runs[-1][-1]:
            runs.append([verse])
    return runs


def collapse_mobile_rows(table, rows):
    """Fold per-verse rows back into range rows.

    Rows written together from one entry share scope, book, chapter, payload
    and created_at; each consecutive run of verses among them becomes one
    range.
    """
    groups = {}
    for row in rows:
        if not isinstance(row, dict):
            continue
        try:
            chapter = int(row.get('chapter_number') or 0)
            verse = int(row.get('verse_number') or 0)
        except (TypeError, ValueError):
            chapter, verse = 0, 0
        book_id = str(row.get('book_id') or '').strip()
        if not book_id or chapter <= 0 or verse <= 0:
            logger.warning(f"Dropping invalid mobile {table.kind} row for {book_id or '?'} {chapter}:{verse}")
            continue

        scope = resolve_row_scope(row)
        created = parse_timestamp(row.get('created_at'))
        payload = tuple(
            str(row.get(column) or '') for column in table.mobile_payload_columns if column != 'updated_at'
        )
        key = (scope, book_id, chapter, payload, created.isoformat() if created else '')
        groups.setdefault(key, []).append((verse, row))

    collapsed = []
    for (scope, book_id, chapter, payload, created_at), members in groups.items():
        members.sort(key=lambda member: member[0])
        created_at = safe_iso(created_at)
        for run in _verse_runs([verse for verse, _ in members]):
            run_rows = [row for verse, row in members if run[0] <= verse <= run[-1]]
            range_row = {
                'language_code': scope.language_code,
                'version_code': scope.version_code,
                'book_id': book_id,
                'chapter': chapter,
                'verse_start': run[0],
                'verse_end': run[-1],
                'reference_label': f"{chapter}:{run[0]}" if len(run) == 1 else f"{chapter}:{run[0]}-{run[-1]}",
                'excerpt': '',
                'created_at': created_at,
            }
            for column in table.mobile_payload_columns:
                if column == 'updated_at':
                    stamps = [row.get('updated_at') for row in run_rows]
                    range_row['updated_at'] = max(stamps, key=timestamp_sort_key)
                else:
                    range_row[column] = run_rows[0].get(column)
            collapsed.append(range_row)
    return collapsed


class CloudAdapter:
    """Reads and writes the shared store without the caller knowing which table shape is live."""

    def __init__(self, transport, delete_batch_size=None):
        self.transport = transport
        self.delete_batch_size = delete_batch_size or Config.DELETE_BATCH_SIZE

    # --- Read path -------------------------------------------------------

    def _load_annotation_rows(self, table, user_id):
        """Range rows for ``table`` from whichever shape answers first.

        SchemaCompatibilityError from the last shape and every other CloudError propagate.
        """
        try:
            return self.transport.select(table.name, table.scoped_columns, user_id)
        except SchemaCompatibilityError as e:
            logger.info(f"{table.name}: scoped columns unavailable ({e.column or e.code}), trying legacy shape")

        try:
            return self.transport.select(table.name, table.legacy_columns, user_id)
        except SchemaCompatibilityError as e:
            logger.info(f"{table.name}: legacy columns unavailable ({e.column or e.code}), trying mobile shape")

        rows = self.transport.select(table.name, table.mobile_columns, user_id)
        return collapse_mobile_rows(table, rows)

    def _load_entries(self, table, user_id):
        rows = self._load_annotation_rows(table, user_id)
        return normalize_entries(rows, table.from_row, f"cloud {table.kind}")

    def _load_plan_progress(self, user_id):
        rows = self.transport.select(Config.PLAN_PROGRESS_TABLE, PLAN_COLUMNS, user_id)
        progress = {}
        for row in rows:
            plan_id = str(row.get('plan_id') or '').strip()
            if not plan_id:
                continue
            progress[plan_id] = plan_progress_from_row(plan_id, row)
        return progress

    def load_store(self, user_id):
        if not str(user_id or '').strip():
            return CloudSnapshot(supported=False, reason='no user')

        try:
            store = PersonalStore(
                bookmarks=self._load_entries(BOOKMARKS, user_id),
                highlights=self._load_entries(HIGHLIGHTS, user_id),
                notes=self._load_entries(NOTES, user_id),
                plan_progress=self._load_plan_progress(user_id),
            )
        except SchemaCompatibilityError as e:
            logger.info(f"Cloud schema for {e.table} is not supported; staying local-only")
            return CloudSnapshot(supported=False, reason='incompatible')
        except CloudError as e:
            logger.error(f"Error loading personal store from cloud ({e.table}): {e.message}")
            return CloudSnapshot(supported=False, reason='failed')

        return CloudSnapshot(supported=True, store=store)

    # --- Write path ------------------------------------------------------

    def _scoped_row(self, user_id, entry, now_iso=None):
        row = {'user_id': user_id}
        row.update(entry.to_dict())
        row.setdefault('updated_at', now_iso or utc_now_iso())
        return row

    def _upsert_mobile(self, user_id, table, entry):
        rows = expand_to_mobile_rows(user_id, table, entry)
        try:
            self.transport.upsert(table.name, rows, on_conflict=MOBILE_CONFLICT_KEY)
            return True
        except SchemaCompatibilityError as e:
            logger.info(f"{table.name}: mobile shape unavailable either ({e.column or e.code})")
        except CloudError as e:
            logger.error(f"Error upserting {table.kind} to mobile schema: {e.message}")
        return False

    def _upsert_entry(self, user_id, table, entry):
        if not str(user_id or '').strip():
            return False
        try:
            self.transport.upsert(table.name, [self._scoped_row(user_id, entry)], on_conflict=ENTRY_CONFLICT_KEY)
            return True
        except SchemaCompatibilityError:
            return self._upsert_mobile(user_id, table, entry)
        except CloudError as e:
            logger.error(f"Error upserting {table.kind} {entry.id} to cloud: {e.message}")
            return False

    def _remove_mobile(self, user_id, table, entry_id):
        parsed = parse_entry_id(entry_id)
        if parsed is None:
            logger.warning(f"Cannot map {table.kind} id {entry_id!r} onto mobile rows")
            return False
        scope, verse_range = parsed
        candidates = mobile_version_candidates(scope)
        filters = {
            'language_code': scope.language_code,
            'book_id': verse_range.book_id,
            'chapter_number': verse_range.chapter,
            'verse_number': verse_range.verse_numbers(),
            'version_code': candidates if len(candidates) > 1 else candidates[0],
        }
        try:
            self.transport.delete(table.name, user_id, filters)
            return True
        except CloudRowNotFound:
            return True
        except SchemaCompatibilityError as e:
            logger.info(f"{table.name}: mobile shape unavailable for delete ({e.column or e.code})")
        except CloudError as e:
            logger.error(f"Error removing {table.kind} {entry_id} from mobile schema: {e.message}")
        return False

    def _remove_entry(self, user_id, table, entry_id):
        if not str(user_id or '').strip() or not str(entry_id or '').strip():
            return False
        try:
            self.transport.delete(table.name, user_id, {'id': entry_id})
            return True
        except CloudRowNotFound:
            return True
        except SchemaCompatibilityError:
            return self._remove_mobile(user_id, table, entry_id)
        except CloudError as e:
            logger.error(f"Error removing {table.kind} {entry_id} from cloud: {e.message}")
            return False

    def upsert_bookmark(self, user_id, entry):
        return self._upsert_entry(user_id, BOOKMARKS, entry)

    def remove_bookmark(self, user_id, entry_id):
        return self._remove_entry(user_id, BOOKMARKS, entry_id)

    def upsert_highlight(self, user_id, entry):
        return self._upsert_entry(user_id, HIGHLIGHTS, entry)

    def remove_highlight(self, user_id, entry_id):
        return self._remove_entry(user_id, HIGHLIGHTS, entry_id)

    def upsert_note(self, user_id, entry):
        return self._upsert_entry(user_id, NOTES, entry)

    def remove_note(self, user_id, entry_id):
        return self._remove_entry(user_id, NOTES, entry_id)

    def _plan_row(self, user_id, progress, now_iso):
        return {
            'user_id': user_id,
            'plan_id': progress.plan_id,
            'completed_dates': list(progress.completed_dates),
            'last_completed_at': progress.last_completed_at or now_iso,
            'updated_at': now_iso,
        }

    def upsert_plan_progress(self, user_id, progress):
        if not str(user_id or '').strip() or not str(progress.plan_id or '').strip():
            return False
        try:
            self.transport.upsert(
                Config.PLAN_PROGRESS_TABLE,
                [self._plan_row(user_id, progress, utc_now_iso())],
                on_conflict=PLAN_CONFLICT_KEY,
            )
            return True
        except SchemaCompatibilityError as e:
            logger.info(f"Plan progress table unavailable ({e.column or e.code})")
        except CloudError as e:
            logger.error(f"Error upserting plan progress {progress.plan_id} to cloud: {e.message}")
        return False

    # --- Full sync + reconciliation --------------------------------------

    def sync_store(self, user_id, store):
        """Write the whole snapshot, then delete cloud rows that are gone locally.

        Reconciliation only runs when every bulk write succeeded on the
        scoped shape; on any schema-compatibility failure it is skipped
        entirely.
        """
        if not str(user_id or '').strip():
            return False

        now_iso = utc_now_iso()
        collections = (
            (BOOKMARKS, store.bookmarks),
            (HIGHLIGHTS, store.highlights),
            (NOTES, store.notes),
        )

        incompatible_tables = []
        for table, entries in collections:
            if not entries:
                continue
            rows = [self._scoped_row(user_id, entry, now_iso) for entry in entries]
            try:
                self.transport.upsert(table.name, rows, on_conflict=ENTRY_CONFLICT_KEY)
            except SchemaCompatibilityError:
                incompatible_tables.append((table, entries))
            except CloudError as e:
                logger.error(f"Error syncing {table.name} to cloud: {e.message}")
                return False

        plans_compatible = True
        if store.plan_progress:
            plan_rows = [self._plan_row(user_id, progress, now_iso) for progress in store.plan_progress.values()]
            try:
                self.transport.upsert(Config.PLAN_PROGRESS_TABLE, plan_rows, on_conflict=PLAN_CONFLICT_KEY)
            except SchemaCompatibilityError:
                plans_compatible = False
            except CloudError as e:
                logger.error(f"Error syncing plan progress to cloud: {e.message}")
                return False

        if incompatible_tables or not plans_compatible:
            logger.info("Cloud schema differs from the scoped shape; writing entries one by one, skipping reconciliation")
            ok = True
            for table, entries in incompatible_tables:
                for entry in entries:
                    ok = self._upsert_entry(user_id, table, entry) and ok
            return ok

        return self._reconcile(user_id, store)

    def _reconcile(self, user_id, store):
        targets = (
            (BOOKMARKS.name, 'id', [entry.id for entry in store.bookmarks]),
            (HIGHLIGHTS.name, 'id', [entry.id for entry in store.highlights]),
            (NOTES.name, 'id', [entry.id for entry in store.notes]),
            (Config.PLAN_PROGRESS_TABLE, 'plan_id', list(store.plan_progress)),
        )

        # Collect every stale id before deleting anything
        stale = []
        try:
            for table_name, id_column, local_ids in targets:
                local_set = {str(value).strip() for value in local_ids if str(value).strip()}
                rows = self.transport.select(table_name, (id_column,), user_id)
                cloud_ids = {str(row.get(id_column) or '').strip() for row in rows}
                cloud_ids.discard('')
                stale.append((table_name, id_column, sorted(cloud_ids - local_set)))
        except SchemaCompatibilityError as e:
            logger.info(f"Skipping reconciliation: {e.table} does not expose {e.column or 'its id column'}")
            return False
        except CloudError as e:
            logger.error(f"Error loading {e.table} ids for reconciliation: {e.message}")
            return False

        for table_name, id_column, stale_ids in stale:
            for batch in chunked(stale_ids, self.delete_batch_size):
                try:
                    self.transport.delete(table_name, user_id, {id_column: batch})
                except CloudRowNotFound:
                    continue
                except CloudError as e:
                    logger.error(f"Error reconciling deleted rows for {table_name}: {e.message}")
                    return False
            if stale_ids:
                logger.info(f"Reconciled {len(stale_ids)} deleted rows from {table_name}")
        return True

