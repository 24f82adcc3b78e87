# sync/service.py
"""Mutation API: the only entry point reader-facing code calls.

Every mutation is applied to the local store first (synchronous and
authoritative) and then pushed to the cloud in the background. Nothing
that happens on the cloud side can fail or delay a local mutation; only
UserInputError reaches the caller.
"""
import logging

from config import Config
from models import BookmarkEntry, HighlightEntry, NoteEntry, PlanProgress, VerseRange
from sync.dispatch import SyncDispatcher
from sync.errors import UserInputError
from sync.identity import build_id_for_range
from sync.merge import MergeEngine
from sync.scope import ScopeResolver
from utils.dates import local_date_key, utc_now_iso

logger = logging.getLogger(__name__)


def _positive_int(value, field_name):
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise UserInputError(f"{field_name} must be a whole number")
    if number <= 0:
        raise UserInputError(f"{field_name} must be positive")
    return number


def build_verse_range(book_id, chapter, verse_start, verse_end=None):
    book_id = str(book_id or '').strip()
    if not book_id:
        raise UserInputError("book_id is required")
    chapter = _positive_int(chapter, 'chapter')
    verse_start = _positive_int(verse_start, 'verse_start')
    verse_end = verse_start if verse_end is None else _positive_int(verse_end, 'verse_end')
    if verse_end < verse_start:
        raise UserInputError("verse_end cannot be before verse_start")
    return VerseRange(book_id=book_id, chapter=chapter, verse_start=verse_start, verse_end=verse_end)


class PersonalStoreService:
    def __init__(self, local_store, cloud=None, dispatcher=None, merge_engine=None, scope_resolver=None):
        self.local_store = local_store
        self.cloud = cloud
        self.dispatcher = dispatcher or SyncDispatcher()
        self.merge_engine = merge_engine or MergeEngine()
        self.scope_resolver = scope_resolver or ScopeResolver()
        self.user_id = None

    # --- Session ---------------------------------------------------------

    def load(self):
        return self.local_store.load()

    def start_session(self, user_id):
        """Bind the device store to ``user_id`` and merge in that account's cloud snapshot.

        If the cloud cannot be read the local snapshot is returned untouched and
        the service keeps working local-only.
        """
        user_id = str(user_id or '').strip()
        if not user_id:
            raise UserInputError("A signed-in user is required to start a session")

        self.local_store.bind_owner(user_id)
        local = self.local_store.load()
        self.user_id = user_id
        if self.cloud is None:
            return local

        snapshot = self.cloud.load_store(user_id)
        if not snapshot.supported:
            logger.info(f"Cloud personal store unavailable ({snapshot.reason}); staying local-only")
            return local

        # Merge against the store as it is now, so mutations made during the fetch survive
        merged = self.local_store.replace(lambda current: self.merge_engine.merge(current, snapshot.store))
        self.local_store.set_owner(user_id)
        self._push('sync_store', merged)
        return merged

    def bind_user(self, user_id):
        """Make sure the device store belongs to ``user_id`` without touching the network.

        A session of another account is ended first so its pushes stop; the
        cloud snapshot is only fetched by :meth:`start_session`.
        """
        user_id = str(user_id or '').strip()
        if not user_id:
            raise UserInputError("A signed-in user is required")
        if self.user_id and self.user_id != user_id:
            logger.info("Request for another account; ending the current sync session")
            self.user_id = None
        self.local_store.bind_owner(user_id)
        return self.local_store.load()

    def end_session(self, user_id=None):
        """Stop pushing to the cloud. Returns False if ``user_id`` does not own the session."""
        if user_id is not None and str(user_id).strip() != self.user_id:
            return False
        self.user_id = None
        return True

    def _push(self, operation, *args):
        if self.cloud is None or not self.user_id:
            return
        self.dispatcher.submit(getattr(self.cloud, operation), self.user_id, *args)

    # --- Shared mutation steps -------------------------------------------

    def _matches(self, entry, entry_id, scope, verse_range):
        if entry.id == entry_id:
            return True
        # Entries saved under an older id scheme still match by scope and range
        return self.scope_resolver.same_scope(entry.scope, scope) and entry.range == verse_range

    def _upsert(self, collection, entry, push_operation, remove_operation):
        replaced_ids = []

        def apply(store):
            entries = getattr(store, collection)
            matches = [index for index, existing in enumerate(entries)
                       if self._matches(existing, entry.id, entry.scope, entry.range)]
            if not matches:
                entries.insert(0, entry)
                return
            entry.created_at = entries[matches[0]].created_at
            replaced_ids.extend(entries[index].id for index in matches if entries[index].id != entry.id)
            entries[matches[0]] = entry
            for index in reversed(matches[1:]):
                del entries[index]

        store = self.local_store.mutate(apply)
        stored = next((item for item in getattr(store, collection) if item.id == entry.id), None)
        if stored is None:
            self._push('sync_store', store)
        else:
            self._push(push_operation, stored)
        for old_id in replaced_ids:
            self._push(remove_operation, old_id)
        return store

    def _remove(self, collection, scope, verse_range, remove_operation):
        entry_id = build_id_for_range(scope, verse_range)
        removed = []

        def apply(store):
            kept = []
            for entry in getattr(store, collection):
                if self._matches(entry, entry_id, scope, verse_range):
                    removed.append(entry)
                else:
                    kept.append(entry)
            setattr(store, collection, kept)

        store = self.local_store.mutate(apply)
        for entry in removed:
            self._push(remove_operation, entry.id)
        return store

    def _entry_base(self, book_id, chapter, verse_start, verse_end, language_code, version_code,
                    reference_label, excerpt):
        scope = self.scope_resolver.resolve(language_code, version_code)
        verse_range = build_verse_range(book_id, chapter, verse_start, verse_end)
        return {
            'id': build_id_for_range(scope, verse_range),
            'scope': scope,
            'range': verse_range,
            'reference_label': reference_label or verse_range.label,
            'excerpt': excerpt or '',
            'created_at': utc_now_iso(),
        }

    # --- Bookmarks -------------------------------------------------------

    def upsert_bookmark(self, book_id, chapter, verse_start, verse_end=None, reference_label='', excerpt='',
                        language_code=None, version_code=None):
        entry = BookmarkEntry(**self._entry_base(
            book_id, chapter, verse_start, verse_end, language_code, version_code, reference_label, excerpt))
        return self._upsert('bookmarks', entry, 'upsert_bookmark', 'remove_bookmark')

    def remove_bookmark(self, book_id, chapter, verse_start, verse_end=None, language_code=None, version_code=None):
        scope = self.scope_resolver.resolve(language_code, version_code)
        verse_range = build_verse_range(book_id, chapter, verse_start, verse_end)
        return self._remove('bookmarks', scope, verse_range, 'remove_bookmark')

    def toggle_bookmark(self, book_id, chapter, verse_start, verse_end=None, reference_label='', excerpt='',
                        language_code=None, version_code=None):
        """Remove the bookmark for the range if there is one, otherwise create it.

        Returns ``(store, bookmarked)``.
        """
        scope = self.scope_resolver.resolve(language_code, version_code)
        verse_range = build_verse_range(book_id, chapter, verse_start, verse_end)
        entry_id = build_id_for_range(scope, verse_range)
        # The lock is reentrant, so the check and the mutation form one step
        with self.local_store.lock:
            existing = any(self._matches(entry, entry_id, scope, verse_range)
                           for entry in self.local_store.load().bookmarks)
            if existing:
                return self.remove_bookmark(book_id, chapter, verse_start, verse_end, language_code, version_code), False
            store = self.upsert_bookmark(book_id, chapter, verse_start, verse_end, reference_label, excerpt,
                                         language_code, version_code)
            return store, True

    # --- Highlights ------------------------------------------------------

    def upsert_highlight(self, book_id, chapter, verse_start, verse_end=None, color=None, reference_label='',
                         excerpt='', language_code=None, version_code=None):
        entry = HighlightEntry(
            color=str(color or '').strip() or Config.DEFAULT_HIGHLIGHT_COLOR,
            **self._entry_base(book_id, chapter, verse_start, verse_end, language_code, version_code,
                               reference_label, excerpt),
        )
        return self._upsert('highlights', entry, 'upsert_highlight', 'remove_highlight')

    def remove_highlight(self, book_id, chapter, verse_start, verse_end=None, language_code=None, version_code=None):
        scope = self.scope_resolver.resolve(language_code, version_code)
        verse_range = build_verse_range(book_id, chapter, verse_start, verse_end)
        return self._remove('highlights', scope, verse_range, 'remove_highlight')

    # --- Notes -----------------------------------------------------------

    def upsert_note(self, book_id, chapter, verse_start, verse_end=None, note='', reference_label='', excerpt='',
                    language_code=None, version_code=None):
        clean = str(note or '').strip()
        if not clean:
            raise UserInputError("Note cannot be empty")
        base = self._entry_base(book_id, chapter, verse_start, verse_end, language_code, version_code,
                                reference_label, excerpt)
        entry = NoteEntry(note=clean, updated_at=base['created_at'], **base)
        return self._upsert('notes', entry, 'upsert_note', 'remove_note')

    def remove_note(self, book_id, chapter, verse_start, verse_end=None, language_code=None, version_code=None):
        scope = self.scope_resolver.resolve(language_code, version_code)
        verse_range = build_verse_range(book_id, chapter, verse_start, verse_end)
        return self._remove('notes', scope, verse_range, 'remove_note')

    # --- Reading plans ---------------------------------------------------

    def mark_plan_day_completed(self, plan_id, date=None):
        plan_id = str(plan_id or '').strip()
        if not plan_id:
            raise UserInputError("plan_id is required")
        date_key = local_date_key(date)
        if date_key is None:
            raise UserInputError(f"Cannot read {date!r} as a date")
        updated = {}

        def apply(store):
            current = store.plan_progress.get(plan_id)
            completed = set(current.completed_dates) if current else set()
            completed.add(date_key)
            progress = PlanProgress(
                plan_id=plan_id,
                completed_dates=sorted(completed),
                last_completed_at=utc_now_iso(),
            )
            store.plan_progress[plan_id] = progress
            updated['progress'] = progress

        store = self.local_store.mutate(apply)
        self._push('upsert_plan_progress', updated['progress'])
        return store

    # --- Queries ---------------------------------------------------------

    def chapter_annotations(self, book_id, chapter, language_code=None, version_code=None):
        """Bookmarks, highlights and notes of one chapter under one scope."""
        scope = self.scope_resolver.resolve(language_code, version_code)
        book_id = str(book_id or '').strip()
        chapter = _positive_int(chapter, 'chapter')
        store = self.local_store.load()

        def in_chapter(entry):
            return (entry.range.book_id == book_id and entry.range.chapter == chapter
                    and self.scope_resolver.same_scope(entry.scope, scope))

        return {
            'scope': scope,
            'bookmarks': [entry for entry in store.bookmarks if in_chapter(entry)],
            'highlights': [entry for entry in store.highlights if in_chapter(entry)],
            'notes': [entry for entry in store.notes if in_chapter(entry)],
        }
