"""Tests for the cloud adapter against the in-memory transport."""
import pytest

from config import Config
from models import AnnotationScope, BookmarkEntry, HighlightEntry, NoteEntry, PersonalStore, PlanProgress, VerseRange
from sync.cloud import (
    HIGHLIGHTS,
    NOTES,
    CloudAdapter,
    collapse_mobile_rows,
    expand_to_mobile_rows,
    mobile_version_candidates,
    mobile_version_code,
)
from sync.errors import SchemaCompatibilityError
from fakes import FakeCloudTransport

USER_ID = 'user-1'
CREATED = '2024-06-01T08:00:00+00:00'


def _bookmark(entry_id='id:TB1:GEN:1:1:1', verse=1):
    return BookmarkEntry(id=entry_id, scope=AnnotationScope('id', 'TB1'), range=VerseRange('GEN', 1, verse, verse),
                         reference_label=f'1:{verse}', created_at=CREATED)


def _highlight(start=3, end=5, scope=None):
    scope = scope or AnnotationScope('id', 'TB1')
    return HighlightEntry(
        id=f'{scope.language_code}:{scope.version_code}:GEN:1:{start}:{end}',
        scope=scope,
        range=VerseRange('GEN', 1, start, end),
        reference_label=f'1:{start}-{end}',
        created_at=CREATED,
        color='#A7F3D0',
    )


class TestMobileShape:
    def test_tb1_is_spelled_tb_on_mobile(self):
        assert mobile_version_code(AnnotationScope('id', 'TB1')) == 'TB'
        assert mobile_version_code(AnnotationScope('id', 'TB2')) == 'TB2'
        assert mobile_version_candidates(AnnotationScope('id', 'TB1')) == ['TB1', 'TB']
        assert mobile_version_candidates(AnnotationScope('en', 'EN1')) == ['EN1']

    def test_expand_writes_one_row_per_verse(self):
        rows = expand_to_mobile_rows(USER_ID, HIGHLIGHTS, _highlight(3, 5))
        assert [row['verse_number'] for row in rows] == [3, 4, 5]
        assert {row['version_code'] for row in rows} == {'TB'}
        assert {row['color'] for row in rows} == {'#A7F3D0'}
        assert all('verse_start' not in row for row in rows)

    def test_collapse_rebuilds_ranges(self):
        rows = expand_to_mobile_rows(USER_ID, HIGHLIGHTS, _highlight(3, 5))
        rows += expand_to_mobile_rows(USER_ID, HIGHLIGHTS, _highlight(9, 9))
        collapsed = collapse_mobile_rows(HIGHLIGHTS, rows)
        ranges = sorted((row['verse_start'], row['verse_end']) for row in collapsed)
        assert ranges == [(3, 5), (9, 9)]
        assert {row['version_code'] for row in collapsed} == {'TB1'}

    def test_collapse_keeps_different_colors_apart(self):
        rows = [
            {'book_id': 'GEN', 'chapter_number': 1, 'verse_number': 1, 'color': 'yellow', 'created_at': CREATED},
            {'book_id': 'GEN', 'chapter_number': 1, 'verse_number': 2, 'color': 'green', 'created_at': CREATED},
        ]
        assert len(collapse_mobile_rows(HIGHLIGHTS, rows)) == 2

    def test_collapse_takes_latest_note_update(self):
        rows = [
            {'book_id': 'JHN', 'chapter_number': 1, 'verse_number': 1, 'note': 'Logos',
             'created_at': CREATED, 'updated_at': '2024-06-02T00:00:00+00:00'},
            {'book_id': 'JHN', 'chapter_number': 1, 'verse_number': 2, 'note': 'Logos',
             'created_at': CREATED, 'updated_at': '2024-06-05T00:00:00+00:00'},
        ]
        [row] = collapse_mobile_rows(NOTES, rows)
        assert (row['verse_start'], row['verse_end']) == (1, 2)
        assert row['updated_at'] == '2024-06-05T00:00:00+00:00'

    def test_collapse_drops_invalid_rows(self):
        rows = [{'book_id': '', 'chapter_number': 1, 'verse_number': 1}, {'book_id': 'GEN', 'chapter_number': 'x'}]
        assert collapse_mobile_rows(HIGHLIGHTS, rows) == []


class TestLoadStore:
    def test_reads_scoped_rows(self, cloud, transport):
        transport.seed(Config.BOOKMARKS_TABLE, dict(_bookmark().to_dict(), user_id=USER_ID),
                       dict(_bookmark('id:TB1:GEN:1:2:2', 2).to_dict(), user_id='someone-else'))
        transport.seed(Config.PLAN_PROGRESS_TABLE, {'user_id': USER_ID, 'plan_id': 'lent',
                                                    'completed_dates': ['2024-03-01'], 'last_completed_at': None})

        snapshot = cloud.load_store(USER_ID)

        assert snapshot.supported
        assert [entry.id for entry in snapshot.store.bookmarks] == ['id:TB1:GEN:1:1:1']
        assert snapshot.store.plan_progress['lent'].completed_dates == ['2024-03-01']

    def test_falls_back_to_legacy_shape(self):
        transport = FakeCloudTransport(shape='legacy')
        transport.seed(Config.NOTES_TABLE, {'user_id': USER_ID, 'id': 'old-uuid', 'book_id': 'ROM', 'chapter': 8,
                                            'verse_start': 28, 'note': 'Segala sesuatu', 'created_at': CREATED})

        snapshot = CloudAdapter(transport).load_store(USER_ID)

        assert snapshot.supported
        [note] = snapshot.store.notes
        assert note.id == 'old-uuid'
        assert note.scope == AnnotationScope('id', 'TB1')

    def test_falls_back_to_mobile_shape(self):
        transport = FakeCloudTransport(shape='mobile')
        transport.seed(Config.HIGHLIGHTS_TABLE, *expand_to_mobile_rows(USER_ID, HIGHLIGHTS, _highlight(3, 5)))

        snapshot = CloudAdapter(transport).load_store(USER_ID)

        [highlight] = snapshot.store.highlights
        assert highlight.id == 'id:TB1:GEN:1:3:5'
        assert highlight.color == '#A7F3D0'

    def test_transient_failure_is_not_an_empty_cloud(self, cloud, transport):
        transport.fail(Config.NOTES_TABLE, 'select')
        snapshot = cloud.load_store(USER_ID)
        assert not snapshot.supported
        assert snapshot.reason == 'failed'

    def test_missing_table_is_incompatible(self, cloud, transport):
        transport.shapes[Config.NOTES_TABLE] = 'missing'
        snapshot = cloud.load_store(USER_ID)
        assert not snapshot.supported
        assert snapshot.reason == 'incompatible'

    def test_requires_user(self, cloud):
        assert not cloud.load_store('  ').supported


class TestEntryWrites:
    def test_scoped_upsert(self, cloud, transport):
        assert cloud.upsert_bookmark(USER_ID, _bookmark())
        [row] = transport.rows(Config.BOOKMARKS_TABLE, USER_ID)
        assert row['id'] == 'id:TB1:GEN:1:1:1'
        assert row['language_code'] == 'id'
        assert row['updated_at']

    def test_upsert_falls_back_to_mobile_rows(self):
        transport = FakeCloudTransport(shape='mobile')
        cloud = CloudAdapter(transport)

        assert cloud.upsert_highlight(USER_ID, _highlight(3, 5))

        assert transport.ids(Config.HIGHLIGHTS_TABLE, USER_ID, column='verse_number') == [3, 4, 5]
        snapshot = cloud.load_store(USER_ID)
        assert [entry.id for entry in snapshot.store.highlights] == ['id:TB1:GEN:1:3:5']

    def test_mobile_upsert_is_idempotent(self):
        transport = FakeCloudTransport(shape='mobile')
        cloud = CloudAdapter(transport)
        cloud.upsert_highlight(USER_ID, _highlight(3, 5))
        cloud.upsert_highlight(USER_ID, _highlight(3, 5))
        assert len(transport.rows(Config.HIGHLIGHTS_TABLE, USER_ID)) == 3

    def test_mobile_remove_covers_both_tb_spellings(self):
        transport = FakeCloudTransport(shape='mobile')
        transport.seed(Config.HIGHLIGHTS_TABLE, *expand_to_mobile_rows(USER_ID, HIGHLIGHTS, _highlight(3, 5)))
        transport.seed(Config.HIGHLIGHTS_TABLE, {'user_id': USER_ID, 'language_code': 'id', 'version_code': 'TB1',
                                                 'book_id': 'GEN', 'chapter_number': 1, 'verse_number': 4})
        transport.seed(Config.HIGHLIGHTS_TABLE, {'user_id': USER_ID, 'language_code': 'id', 'version_code': 'TB',
                                                 'book_id': 'GEN', 'chapter_number': 1, 'verse_number': 8})

        assert CloudAdapter(transport).remove_highlight(USER_ID, 'id:TB1:GEN:1:3:5')

        assert transport.ids(Config.HIGHLIGHTS_TABLE, USER_ID, column='verse_number') == [8]

    def test_mobile_remove_needs_parsable_id(self):
        transport = FakeCloudTransport(shape='mobile')
        assert not CloudAdapter(transport).remove_bookmark(USER_ID, 'old-uuid')

    def test_transient_write_failure_is_reported(self, cloud, transport):
        transport.fail(Config.NOTES_TABLE, 'upsert')
        note = NoteEntry(id='id:TB1:JHN:1:1:1', scope=AnnotationScope('id', 'TB1'),
                         range=VerseRange('JHN', 1, 1, 1), created_at=CREATED, note='x', updated_at=CREATED)
        assert cloud.upsert_note(USER_ID, note) is False

    def test_remove_scoped_row(self, cloud, transport):
        cloud.upsert_bookmark(USER_ID, _bookmark())
        assert cloud.remove_bookmark(USER_ID, 'id:TB1:GEN:1:1:1')
        assert transport.rows(Config.BOOKMARKS_TABLE) == []

    def test_plan_progress_upsert(self, cloud, transport):
        progress = PlanProgress('advent', ['2024-12-01'], None)
        assert cloud.upsert_plan_progress(USER_ID, progress)
        [row] = transport.rows(Config.PLAN_PROGRESS_TABLE, USER_ID)
        assert row['completed_dates'] == ['2024-12-01']
        assert row['last_completed_at']


class TestSyncStore:
    def _seed_stale(self, transport):
        for stale_id in ('stale-1', 'stale-2', 'stale-3'):
            transport.seed(Config.BOOKMARKS_TABLE, {'user_id': USER_ID, 'id': stale_id, 'book_id': 'EXO',
                                                    'chapter': 1, 'verse_start': 1, 'verse_end': 1})
        transport.seed(Config.BOOKMARKS_TABLE, {'user_id': 'someone-else', 'id': 'stale-1', 'book_id': 'EXO',
                                                'chapter': 1, 'verse_start': 1, 'verse_end': 1})

    def test_reconciliation_deletes_rows_gone_locally(self, cloud, transport):
        self._seed_stale(transport)
        transport.seed(Config.PLAN_PROGRESS_TABLE, {'user_id': USER_ID, 'plan_id': 'dropped-plan'})
        store = PersonalStore(bookmarks=[_bookmark()], plan_progress={'lent': PlanProgress('lent', ['2024-03-01'])})

        assert cloud.sync_store(USER_ID, store)

        assert transport.ids(Config.BOOKMARKS_TABLE, USER_ID) == ['id:TB1:GEN:1:1:1']
        assert transport.ids(Config.BOOKMARKS_TABLE, 'someone-else') == ['stale-1']
        assert transport.ids(Config.PLAN_PROGRESS_TABLE, USER_ID, column='plan_id') == ['lent']
        # Three stale bookmarks in batches of two
        deletes = [call for call in transport.calls if call == ('delete', Config.BOOKMARKS_TABLE)]
        assert len(deletes) == 2

    def test_reconciliation_skipped_when_a_table_is_incompatible(self, cloud, transport):
        self._seed_stale(transport)
        transport.shapes[Config.HIGHLIGHTS_TABLE] = 'mobile'

        assert cloud.sync_store(USER_ID, PersonalStore(bookmarks=[_bookmark()])) is False

        assert 'stale-1' in transport.ids(Config.BOOKMARKS_TABLE, USER_ID)
        assert not any(operation == 'delete' for operation, _ in transport.calls)

    def test_incompatible_bulk_write_falls_back_per_entry(self, cloud, transport):
        self._seed_stale(transport)
        transport.shapes[Config.HIGHLIGHTS_TABLE] = 'mobile'
        store = PersonalStore(bookmarks=[_bookmark()], highlights=[_highlight(3, 5)])

        assert cloud.sync_store(USER_ID, store)

        assert transport.ids(Config.HIGHLIGHTS_TABLE, USER_ID, column='verse_number') == [3, 4, 5]
        assert 'stale-2' in transport.ids(Config.BOOKMARKS_TABLE, USER_ID)

    def test_transient_failure_aborts_before_reconciling(self, cloud, transport):
        self._seed_stale(transport)
        transport.fail(Config.BOOKMARKS_TABLE, 'upsert')

        assert cloud.sync_store(USER_ID, PersonalStore(bookmarks=[_bookmark()])) is False
        assert len(transport.ids(Config.BOOKMARKS_TABLE, USER_ID)) == 3

    def test_failed_id_listing_deletes_nothing(self, cloud, transport):
        self._seed_stale(transport)
        transport.fail(Config.PLAN_PROGRESS_TABLE, 'select')

        assert cloud.sync_store(USER_ID, PersonalStore()) is False
        assert len(transport.ids(Config.BOOKMARKS_TABLE, USER_ID)) == 3

    @pytest.mark.parametrize('user_id', ['', None])
    def test_requires_user(self, cloud, user_id):
        assert cloud.sync_store(user_id, PersonalStore()) is False


def test_fake_transport_rejects_unknown_columns():
    transport = FakeCloudTransport(shape='legacy')
    with pytest.raises(SchemaCompatibilityError) as excinfo:
        transport.select(Config.BOOKMARKS_TABLE, ('id', 'language_code'), USER_ID)
    assert excinfo.value.column == 'language_code'
