# sync/transport.py
"""Row-oriented port to the cloud store and its Supabase implementation.

Failures are classified exactly once, here, into the structured errors of
``sync.errors``; nothing above this module looks at error text.
"""
import logging
import re
from abc import ABC, abstractmethod

import httpx
from postgrest.exceptions import APIError

from sync.errors import CloudRowNotFound, SchemaCompatibilityError, TransientSyncFailure

logger = logging.getLogger(__name__)

# 42P01 undefined_table, 42703 undefined_column,
# PGRST204 column missing from schema cache, PGRST205 table missing from schema cache
SCHEMA_ERROR_CODES = {'42P01', '42703', 'PGRST204', 'PGRST205'}
NOT_FOUND_ERROR_CODES = {'PGRST116'}

_COLUMN_PATTERNS = (
    re.compile(r"column \"?([\w.]+)\"? does not exist", re.IGNORECASE),
    re.compile(r"the '(\w+)' column", re.IGNORECASE),
)


def _column_from_message(message):
    for pattern in _COLUMN_PATTERNS:
        match = pattern.search(message or '')
        if match:
            return match.group(1).split('.')[-1]
    return None


def classify_api_error(error, table=None):
    """Map a PostgREST APIError onto the engine's error taxonomy."""
    code = str(getattr(error, 'code', '') or '').upper()
    message = getattr(error, 'message', None) or str(error)
    if code in SCHEMA_ERROR_CODES:
        return SchemaCompatibilityError(message, table=table, code=code, column=_column_from_message(message))
    if code in NOT_FOUND_ERROR_CODES:
        return CloudRowNotFound(message, table=table, code=code)
    return TransientSyncFailure(message, table=table, code=code or None)


class CloudTransport(ABC):
    """The only contract required of the cloud connection."""

    @abstractmethod
    def select(self, table, columns, user_id):
        """Return every row of ``table`` owned by ``user_id`` as a list of dicts."""

    @abstractmethod
    def upsert(self, table, rows, on_conflict):
        """Insert or update ``rows``, resolving conflicts on the comma separated key."""

    @abstractmethod
    def delete(self, table, user_id, filters):
        """Delete rows of ``user_id`` matching ``filters``.

        A scalar filter value means equality, a list means membership.
        """


class SupabaseTransport(CloudTransport):
    def __init__(self, client):
        self.client = client

    def _execute(self, table, query):
        try:
            response = query.execute()
        except APIError as e:
            raise classify_api_error(e, table=table) from e
        except httpx.HTTPError as e:
            raise TransientSyncFailure(f"Network error talking to {table}: {e}", table=table) from e
        return response

    def select(self, table, columns, user_id):
        query = self.client.table(table).select(', '.join(columns)).eq('user_id', user_id)
        response = self._execute(table, query)
        rows = response.data if isinstance(response.data, list) else []
        return [row for row in rows if isinstance(row, dict)]

    def upsert(self, table, rows, on_conflict):
        if not rows:
            return
        query = self.client.table(table).upsert(rows, on_conflict=on_conflict)
        self._execute(table, query)

    def delete(self, table, user_id, filters):
        query = self.client.table(table).delete().eq('user_id', user_id)
        for column, value in filters.items():
            if isinstance(value, (list, tuple, set)):
                query = query.in_(column, list(value))
            else:
                query = query.eq(column, value)
        self._execute(table, query)
