"""Live, app-wide cache of the ``content_sections`` table.

The store performs a full read on activation and again after every committed
insert, update or delete on the table. Writes made by other processes are
picked up by ``sync()``, which compares a cheap table fingerprint. Each read
carries a request token and only the most recently issued read may replace the
cached snapshot, so a slow read that finishes after a newer one cannot roll
the cache back.
"""
import itertools
import logging
import threading
import time

from flask import current_app

from .backend import BackendError

logger = logging.getLogger(__name__)

CONTENT_TABLE = 'content_sections'


def _sort_key(row):
    sort_order = row.get('sort_order')
    return (sort_order is None, sort_order if sort_order is not None else 0)


class SectionSnapshot:
    """Immutable view over one successful read."""

    __slots__ = ('sections', 'by_type', 'active_sections')

    def __init__(self, rows=()):
        self.sections = tuple(sorted(rows, key=_sort_key))
        by_type = {}
        for row in self.sections:
            by_type.setdefault(row.get('section_type'), row)
        self.by_type = by_type
        self.active_sections = tuple(row for row in self.sections if row.get('is_active'))


class ContentSectionStore:
    def __init__(self, backend, table=CONTENT_TABLE, sync_interval=0.0):
        self.backend = backend
        self.table = table
        self.error = None
        self.is_loading = False
        self._snapshot = SectionSnapshot()
        self._lock = threading.Lock()
        self._tokens = itertools.count(1)
        self._latest_token = 0
        self._active = False
        self._subscription = None
        self.sync_interval = sync_interval
        self._version = None
        self._last_sync = None

    @property
    def active(self):
        return self._active

    @property
    def sections(self):
        return list(self._snapshot.sections)

    @property
    def active_sections(self):
        return list(self._snapshot.active_sections)

    @property
    def by_type(self):
        return dict(self._snapshot.by_type)

    def get_section(self, section_type):
        return self._snapshot.by_type.get(section_type)

    def get_metadata(self, section_type):
        section = self.get_section(section_type)
        if section is None:
            return None
        return section.get('metadata')

    def activate(self):
        if self._active:
            return self
        self._active = True
        # Subscribe before the first read so a commit landing during it is not missed.
        self._subscription = self.backend.subscribe(self.table, self._handle_change)
        self.refresh()
        return self

    def deactivate(self):
        with self._lock:
            self._active = False
            self.is_loading = False
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def refresh(self):
        """Run one full read; returns True when the result was applied."""
        with self._lock:
            token = next(self._tokens)
            self._latest_token = token
            self.is_loading = True
        try:
            version = self.backend.table_version(self.table)
            rows = self.backend.select(self.table, order_by='sort_order', ascending=True)
        except BackendError as exc:
            logger.warning('Content sections fetch failed: %s', exc)
            with self._lock:
                if self._active and token == self._latest_token:
                    self.error = str(exc) or 'Failed to load content sections.'
                    self.is_loading = False
            return False

        snapshot = SectionSnapshot(rows)
        with self._lock:
            if not self._active or token != self._latest_token:
                logger.debug('Discarding stale content sections read (token=%s, latest=%s).', token, self._latest_token)
                return False
            self._snapshot = snapshot
            self._version = version
            self.error = None
            self.is_loading = False
        return True

    def sync(self):
        """Refetch when the table fingerprint moved; returns True when a read was applied.

        Commit hooks only see writes made through this process's sessions, so
        callers run this periodically (at most once per ``sync_interval``).
        """
        if not self._active:
            return False
        now = time.monotonic()
        if self._last_sync is not None and now - self._last_sync < self.sync_interval:
            return False
        self._last_sync = now
        try:
            version = self.backend.table_version(self.table)
        except BackendError as exc:
            logger.warning('Content sections version check failed: %s', exc)
            return False
        if version == self._version:
            return False
        logger.info('Content sections changed outside this process; refetching.')
        return self.refresh()

    def _handle_change(self, change):
        if not self._active:
            return
        logger.debug('Content sections %s on row %s; refetching.', change.event, change.record.get('id'))
        self.refresh()


def get_content_store(app=None):
    return (app or current_app).extensions['content_store']
