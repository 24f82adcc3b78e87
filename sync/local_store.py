# sync/local_store.py
import json
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager

from config import Config
from database import get_db_session
from models import PersonalStore
from models.blob import StoredBlob
from sync.normalize import store_from_dict

logger = logging.getLogger(__name__)


class BlobStorage(ABC):
    """Key/value port for the persisted snapshot and the owner marker."""

    @abstractmethod
    def get(self, key):
        """Return the stored string for ``key`` or None."""

    @abstractmethod
    def set(self, key, value):
        pass

    @abstractmethod
    def remove(self, key):
        pass


class SqlBlobStorage(BlobStorage):
    """BlobStorage on top of a SQLAlchemy session factory (SQLite on the device)."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def get(self, key):
        with get_db_session(self._session_factory) as db:
            blob = db.get(StoredBlob, key)
            return blob.value if blob is not None else None

    def set(self, key, value):
        with get_db_session(self._session_factory) as db:
            blob = db.get(StoredBlob, key)
            if blob is None:
                db.add(StoredBlob(key=key, value=value))
            else:
                blob.value = value

    def remove(self, key):
        with get_db_session(self._session_factory) as db:
            blob = db.get(StoredBlob, key)
            if blob is not None:
                db.delete(blob)


def _normalize_owner_id(value):
    normalized = str(value).strip() if value is not None else ''
    return normalized or None


class LocalStore:
    """Owner-scoped, versioned snapshot of every annotation collection.

    The local store is the source of truth for the device. Reads never fail:
    a corrupt blob loads as an empty store and a bad entry is dropped on its
    own. Mutations go through :meth:`mutate`, which holds a lock for the whole
    read-modify-write so two mutations can never interleave.
    """

    def __init__(self, storage, storage_key=None, legacy_storage_key=None, owner_key=None):
        self.storage = storage
        self.storage_key = storage_key or Config.STORAGE_KEY
        self.legacy_storage_key = legacy_storage_key or Config.LEGACY_STORAGE_KEY
        self.owner_key = owner_key or Config.OWNER_STORAGE_KEY
        self.lock = threading.RLock()

    def _read(self, key, raw_value=None):
        if raw_value is None:
            raw_value = self.storage.get(key)
        if not raw_value:
            return PersonalStore.empty()
        try:
            data = json.loads(raw_value)
        except ValueError as e:
            logger.error(f"Stored personal data under {key} is not valid JSON: {e}")
            return PersonalStore.empty()
        return store_from_dict(data, source=key)

    def load(self):
        with self.lock:
            raw_current = self.storage.get(self.storage_key)
            current = self._read(self.storage_key, raw_current)
            # An explicitly saved empty store (e.g. after an account switch) is not migrated over
            if raw_current is not None:
                return current

            legacy = self._read(self.legacy_storage_key)
            if not legacy.is_empty():
                logger.info(f"Migrating personal data from {self.legacy_storage_key} to {self.storage_key}")
                self.save(legacy)
                return legacy

            return PersonalStore.empty()

    def save(self, store):
        with self.lock:
            self.storage.set(self.storage_key, json.dumps(store.to_dict()))

    def clear(self):
        self.save(PersonalStore.empty())

    def get_owner(self):
        return _normalize_owner_id(self.storage.get(self.owner_key))

    def set_owner(self, user_id):
        normalized = _normalize_owner_id(user_id)
        if normalized is None:
            self.storage.remove(self.owner_key)
            return
        self.storage.set(self.owner_key, normalized)

    def bind_owner(self, user_id):
        """Clear the snapshot if it belongs to another account, then mark ``user_id`` as owner.

        Returns True when a foreign snapshot was cleared.
        """
        with self.lock:
            owner = self.get_owner()
            cleared = False
            if owner and owner != _normalize_owner_id(user_id):
                logger.info("Personal store belongs to another account; clearing before sync")
                self.clear()
                cleared = True
            self.set_owner(user_id)
            return cleared

    @contextmanager
    def transaction(self):
        """Yield the loaded store and persist it when the block exits without error."""
        with self.lock:
            store = self.load()
            yield store
            self.save(store)

    def mutate(self, mutator):
        with self.transaction() as store:
            mutator(store)
        return store

    def replace(self, transform):
        """Swap the snapshot for ``transform(current)`` in one locked step."""
        with self.lock:
            store = transform(self.load())
            self.save(store)
            return store
