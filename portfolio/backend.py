"""Backend collaborator used by the content store, aggregators and admin gate.

The rest of the application never touches table classes from the core
modules; it asks this object for rows (plain dicts), subscribes to change
notifications and reads the signed-in identity. Change notifications are
collected by ORM mapper events while a transaction flushes and are delivered
only once that transaction commits.
"""
import logging
import threading
from collections import namedtuple

from flask import current_app, has_app_context, has_request_context
from flask_login import current_user, login_user, logout_user, user_logged_in, user_logged_out
from sqlalchemy import event, func, inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, object_session

from .models import ROLE_ADMIN, TABLES, db

logger = logging.getLogger(__name__)

EVENT_INSERT = 'insert'
EVENT_UPDATE = 'update'
EVENT_DELETE = 'delete'
ALL_TABLES = '*'

AUTH_SIGNED_IN = 'SIGNED_IN'
AUTH_SIGNED_OUT = 'SIGNED_OUT'

_PENDING_CHANGES_KEY = 'portfolio_pending_changes'
_hooks_installed = False

ChangeEvent = namedtuple('ChangeEvent', ['table', 'event', 'record'])


class BackendError(Exception):
    """Raised when a read against the backend fails."""


class Subscription:
    def __init__(self, release):
        self._release = release
        self.active = True

    def unsubscribe(self):
        if not self.active:
            return
        self.active = False
        self._release()


def _snapshot(target):
    state = inspect(target)
    return {key: value for key, value in state.dict.items() if not key.startswith('_')}


def _change_recorder(kind):
    def record(mapper, connection, target):
        session = object_session(target)
        if session is None:
            return
        pending = session.info.setdefault(_PENDING_CHANGES_KEY, [])
        pending.append(ChangeEvent(target.__tablename__, kind, _snapshot(target)))
    return record


def _record_bulk_statement(orm_execute_state):
    # Query.update/delete and update()/delete() statements skip the mapper hooks.
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    table = getattr(orm_execute_state.statement, 'table', None)
    if table is None or table.name not in TABLES:
        return
    kind = EVENT_UPDATE if orm_execute_state.is_update else EVENT_DELETE
    pending = orm_execute_state.session.info.setdefault(_PENDING_CHANGES_KEY, [])
    pending.append(ChangeEvent(table.name, kind, {}))


def _dispatch_committed_changes(session):
    changes = session.info.pop(_PENDING_CHANGES_KEY, None)
    if not changes or not has_app_context():
        return
    backend = current_app.extensions.get('backend')
    if backend is None:
        return
    for change in changes:
        backend.publish(change)


def _discard_pending_changes(session):
    session.info.pop(_PENDING_CHANGES_KEY, None)


def install_change_hooks():
    global _hooks_installed
    if _hooks_installed:
        return
    for model in TABLES.values():
        event.listen(model, 'after_insert', _change_recorder(EVENT_INSERT))
        event.listen(model, 'after_update', _change_recorder(EVENT_UPDATE))
        event.listen(model, 'after_delete', _change_recorder(EVENT_DELETE))
    event.listen(Session, 'do_orm_execute', _record_bulk_statement)
    event.listen(Session, 'after_commit', _dispatch_committed_changes)
    event.listen(Session, 'after_rollback', _discard_pending_changes)
    _hooks_installed = True


class Backend:
    def __init__(self, app=None):
        self.engine = None
        self._lock = threading.Lock()
        self._table_listeners = {}
        self._auth_listeners = []
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        install_change_hooks()
        with app.app_context():
            self.engine = db.engine
        user_logged_in.connect(self._handle_signed_in, app)
        user_logged_out.connect(self._handle_signed_out, app)
        app.extensions['backend'] = self

    # Table reads

    def _model(self, table):
        try:
            return TABLES[table]
        except KeyError:
            raise BackendError(f'Unknown table: {table}') from None

    def select(self, table, order_by=None, ascending=True, **filters):
        model = self._model(table)
        statement = select(model).filter_by(**filters)
        if order_by:
            column = getattr(model, order_by)
            statement = statement.order_by(column.asc() if ascending else column.desc(), model.id.asc())
        # Reads run on their own session so they are safe inside commit hooks.
        try:
            with Session(self.engine) as session:
                return [row.to_dict() for row in session.scalars(statement)]
        except SQLAlchemyError as exc:
            raise BackendError(f'Failed to read {table}: {exc.__class__.__name__}') from exc

    def select_one(self, table, **filters):
        rows = self.select(table, **filters)
        return rows[0] if rows else None

    def table_version(self, table):
        """Cheap fingerprint of a table: row count, highest id, latest ``updated_at``.

        Lets a process notice writes it did not make itself (other workers,
        bulk statements, direct database edits that touch ``updated_at``).
        """
        model = self._model(table)
        columns = [func.count(model.id), func.max(model.id)]
        if hasattr(model, 'updated_at'):
            columns.append(func.max(model.updated_at))
        try:
            with Session(self.engine) as session:
                return tuple(session.execute(select(*columns)).one())
        except SQLAlchemyError as exc:
            raise BackendError(f'Failed to read {table} version: {exc.__class__.__name__}') from exc

    # Change notifications

    def subscribe(self, table, callback):
        with self._lock:
            self._table_listeners.setdefault(table, []).append(callback)

        def release():
            with self._lock:
                listeners = self._table_listeners.get(table, [])
                if callback in listeners:
                    listeners.remove(callback)
        return Subscription(release)

    def publish(self, change):
        with self._lock:
            callbacks = list(self._table_listeners.get(change.table, ()))
            callbacks.extend(self._table_listeners.get(ALL_TABLES, ()))
        for callback in callbacks:
            try:
                callback(change)
            except Exception:
                logger.exception('Change listener failed for %s %s.', change.table, change.event)

    # Auth session

    def get_session_user(self):
        if not has_request_context():
            return None
        try:
            if not current_user.is_authenticated:
                return None
            return current_user.to_dict()
        except SQLAlchemyError as exc:
            raise BackendError('Failed to load session user.') from exc

    def get_role(self, user_id):
        rows = self.select('user_roles', user_id=user_id)
        roles = [row['role'] for row in rows]
        if ROLE_ADMIN in roles:
            return ROLE_ADMIN
        return roles[0] if roles else None

    def sign_in(self, user, remember=False):
        return login_user(user, remember=remember)

    def sign_out(self):
        return logout_user()

    def on_auth_state_change(self, callback):
        with self._lock:
            self._auth_listeners.append(callback)

        def release():
            with self._lock:
                if callback in self._auth_listeners:
                    self._auth_listeners.remove(callback)
        return Subscription(release)

    def _emit_auth_event(self, auth_event, user):
        payload = user.to_dict() if user is not None and hasattr(user, 'to_dict') else None
        with self._lock:
            callbacks = list(self._auth_listeners)
        for callback in callbacks:
            callback(auth_event, payload)

    def _handle_signed_in(self, sender, user=None, **extra):
        self._emit_auth_event(AUTH_SIGNED_IN, user)

    def _handle_signed_out(self, sender, user=None, **extra):
        self._emit_auth_event(AUTH_SIGNED_OUT, user)


def get_backend():
    return current_app.extensions['backend']
