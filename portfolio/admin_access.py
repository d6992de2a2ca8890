"""Access gate for the admin shell.

An ``AdminAccess`` starts in ``loading`` and settles in ``authorized`` or
``denied`` after one ``resolve()`` pass. ``denied`` always carries the URL
the visitor is sent to and, for signed-in non-admins, a notice to flash.
"""
import logging

from .backend import AUTH_SIGNED_OUT, BackendError
from .models import ROLE_ADMIN

logger = logging.getLogger(__name__)

STATE_LOADING = 'loading'
STATE_AUTHORIZED = 'authorized'
STATE_DENIED = 'denied'

ACCESS_DENIED_NOTICE = "You don't have admin permissions."

ADMIN_TABS = (
    'dashboard',
    'orders',
    'messages',
    'content',
    'projects',
    'reviews',
    'users',
    'analytics',
)
ADMIN_TAB_LABELS = {
    'dashboard': 'Dashboard',
    'orders': 'Orders',
    'messages': 'Messages',
    'content': 'Content',
    'projects': 'Projects',
    'reviews': 'Reviews',
    'users': 'Users',
    'analytics': 'Analytics',
}
DEFAULT_TAB = 'dashboard'


def normalize_tab(value):
    candidate = (value or '').strip().lower()
    if candidate in ADMIN_TABS:
        return candidate
    return DEFAULT_TAB


class AdminAccess:
    def __init__(self, backend, login_url='/auth?admin=1', home_url='/'):
        self.backend = backend
        self.login_url = login_url
        self.home_url = home_url
        self.state = STATE_LOADING
        self.user = None
        self.role = None
        self.redirect_to = None
        self.notice = None
        self._subscription = None

    @property
    def authorized(self):
        return self.state == STATE_AUTHORIZED

    @property
    def denied(self):
        return self.state == STATE_DENIED

    def _deny(self, target, notice=None):
        self.state = STATE_DENIED
        self.redirect_to = target
        self.notice = notice
        self.user = None
        self.role = None
        return self.state

    def resolve(self):
        try:
            user = self.backend.get_session_user()
            if user is None:
                return self._deny(self.login_url)
            role = self.backend.get_role(user['id'])
        except BackendError:
            logger.exception('Admin access check failed.')
            return self._deny(self.login_url)

        if role != ROLE_ADMIN:
            logger.info('Admin access denied for user %s (role=%s).', user.get('id'), role)
            return self._deny(self.home_url, ACCESS_DENIED_NOTICE)

        self.state = STATE_AUTHORIZED
        self.user = user
        self.role = role
        self.redirect_to = None
        self.notice = None
        return self.state

    def listen(self):
        if self._subscription is None:
            self._subscription = self.backend.on_auth_state_change(self._handle_auth_event)
        return self

    def close(self):
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def _handle_auth_event(self, event, user):
        if event == AUTH_SIGNED_OUT:
            self._deny(self.login_url)
