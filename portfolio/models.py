from datetime import datetime, timezone
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

db = SQLAlchemy()

ROLE_ADMIN = 'admin'
ROLE_USER = 'user'
USER_ROLE_CHOICES = (
    ROLE_ADMIN,
    ROLE_USER,
)
USER_ROLE_LABELS = {
    ROLE_ADMIN: 'Admin',
    ROLE_USER: 'User',
}

ORDER_STATUS_PENDING = 'pending'
ORDER_STATUS_IN_PROGRESS = 'in_progress'
ORDER_STATUS_COMPLETED = 'completed'
ORDER_STATUS_CANCELLED = 'cancelled'
ORDER_STATUSES = (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_IN_PROGRESS,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_CANCELLED,
)
ORDER_STATUS_LABELS = {
    ORDER_STATUS_PENDING: 'Pending',
    ORDER_STATUS_IN_PROGRESS: 'In Progress',
    ORDER_STATUS_COMPLETED: 'Completed',
    ORDER_STATUS_CANCELLED: 'Cancelled',
}

PAYMENT_STATUS_PENDING = 'pending'
PAYMENT_STATUS_PAID = 'paid'
PAYMENT_STATUS_FAILED = 'failed'
PAYMENT_STATUS_REFUNDED = 'refunded'
PAYMENT_STATUSES = (
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_REFUNDED,
)
PAYMENT_STATUS_LABELS = {
    PAYMENT_STATUS_PENDING: 'Pending',
    PAYMENT_STATUS_PAID: 'Paid',
    PAYMENT_STATUS_FAILED: 'Failed',
    PAYMENT_STATUS_REFUNDED: 'Refunded',
}
PAYMENT_METHOD_LABELS = {
    'crypto': 'Crypto (USDT)',
    'bkash': 'bKash',
    'nagad': 'Nagad',
    'fiverr': 'Fiverr',
    'upwork': 'Upwork',
}
# Manual transfer methods need a proof reference attached to the order.
PAYMENT_METHODS_REQUIRING_PROOF = {'crypto', 'bkash', 'nagad'}

SERVICE_TYPE_LABELS = {
    'telegram-bot': 'Telegram Bot',
    'discord-bot': 'Discord Bot',
    'automation-script': 'Automation Script',
    'telegram-mini-app': 'Telegram Mini App',
    'react-web-app': 'React Web Application',
    'custom-solution': 'Custom Solution',
}
TIMELINE_LABELS = {
    '1-3-days': '1-3 Days',
    '1-week': '1 Week',
    '2-weeks': '2 Weeks',
    '1-month': '1 Month',
    'custom': 'Custom Timeline',
}

MESSAGE_STATUS_UNREAD = 'unread'
MESSAGE_STATUS_READ = 'read'
MESSAGE_STATUS_REPLIED = 'replied'
MESSAGE_STATUS_ARCHIVED = 'archived'
MESSAGE_STATUSES = (
    MESSAGE_STATUS_UNREAD,
    MESSAGE_STATUS_READ,
    MESSAGE_STATUS_REPLIED,
    MESSAGE_STATUS_ARCHIVED,
)


def utc_now_naive():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _normalize_choice(value, choices, default):
    candidate = (value or '').strip().lower()
    if candidate in choices:
        return candidate
    return default


def normalize_user_role(value, default=ROLE_USER):
    return _normalize_choice(value, USER_ROLE_CHOICES, default)


def normalize_order_status(value, default=ORDER_STATUS_PENDING):
    candidate = (value or '').strip().lower().replace('-', '_')
    if candidate in ORDER_STATUSES:
        return candidate
    return default


def normalize_payment_status(value, default=PAYMENT_STATUS_PENDING):
    return _normalize_choice(value, PAYMENT_STATUSES, default)


def normalize_message_status(value, default=MESSAGE_STATUS_UNREAD):
    return _normalize_choice(value, MESSAGE_STATUSES, default)


def _isoformat(value):
    return value.isoformat() if value else None


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    display_name = db.Column(db.String(200))
    avatar_url = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, default=utc_now_naive)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'display_name': self.display_name,
            'avatar_url': self.avatar_url,
            'created_at': _isoformat(self.created_at),
        }


class UserRole(db.Model):
    __tablename__ = 'user_roles'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False, default=ROLE_USER)
    created_at = db.Column(db.DateTime, default=utc_now_naive)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'role': self.role,
            'created_at': _isoformat(self.created_at),
        }


class ContentSection(db.Model):
    __tablename__ = 'content_sections'

    id = db.Column(db.Integer, primary_key=True)
    section_type = db.Column(db.String(60), nullable=False, index=True)
    title = db.Column(db.String(300))
    subtitle = db.Column(db.String(500))
    content = db.Column(db.Text)
    image_url = db.Column(db.String(500))
    is_active = db.Column(db.Boolean, default=True)
    sort_order = db.Column(db.Integer, default=0)
    # "metadata" is reserved on declarative models, so the attribute is renamed.
    section_metadata = db.Column('metadata', db.JSON, default=dict)
    created_at = db.Column(db.DateTime, default=utc_now_naive)
    updated_at = db.Column(db.DateTime, default=utc_now_naive, onupdate=utc_now_naive)

    def to_dict(self):
        return {
            'id': self.id,
            'section_type': self.section_type,
            'title': self.title,
            'subtitle': self.subtitle,
            'content': self.content,
            'image_url': self.image_url,
            'is_active': self.is_active,
            'sort_order': self.sort_order,
            'metadata': self.section_metadata,
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at),
        }


class Project(db.Model):
    __tablename__ = 'projects'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text)
    image_url = db.Column(db.String(500))
    technologies = db.Column(db.JSON, default=list)
    github_url = db.Column(db.String(500))
    demo_url = db.Column(db.String(500))
    category = db.Column(db.String(100))
    is_featured = db.Column(db.Boolean, default=False, index=True)
    sort_order = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=utc_now_naive)
    updated_at = db.Column(db.DateTime, default=utc_now_naive, onupdate=utc_now_naive)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'image_url': self.image_url,
            'technologies': list(self.technologies or []),
            'github_url': self.github_url,
            'demo_url': self.demo_url,
            'category': self.category,
            'is_featured': self.is_featured,
            'sort_order': self.sort_order,
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at),
        }


class Review(db.Model):
    __tablename__ = 'reviews'

    id = db.Column(db.Integer, primary_key=True)
    reviewer_name = db.Column(db.String(200))
    reviewer_email = db.Column(db.String(200), index=True)
    rating = db.Column(db.Integer, default=5)
    review_text = db.Column(db.Text)
    is_approved = db.Column(db.Boolean, default=False, index=True)
    is_featured = db.Column(db.Boolean, default=False, index=True)
    project_id = db.Column(db.Integer, index=True)
    order_id = db.Column(db.Integer, index=True)
    user_id = db.Column(db.Integer)
    created_at = db.Column(db.DateTime, default=utc_now_naive)
    updated_at = db.Column(db.DateTime, default=utc_now_naive, onupdate=utc_now_naive)

    def to_dict(self):
        return {
            'id': self.id,
            'reviewer_name': self.reviewer_name,
            'reviewer_email': self.reviewer_email,
            'rating': self.rating,
            'review_text': self.review_text,
            'is_approved': self.is_approved,
            'is_featured': self.is_featured,
            'project_id': self.project_id,
            'order_id': self.order_id,
            'user_id': self.user_id,
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at),
        }


class Order(db.Model):
    __tablename__ = 'orders'

    id = db.Column(db.Integer, primary_key=True)
    customer_name = db.Column(db.String(200), nullable=False)
    customer_email = db.Column(db.String(200), nullable=False, index=True)
    customer_telegram = db.Column(db.String(120))
    service_type = db.Column(db.String(120), nullable=False)
    project_description = db.Column(db.Text, nullable=False)
    project_requirements = db.Column(db.Text)
    budget_range = db.Column(db.String(60), nullable=False)
    timeline = db.Column(db.String(60), nullable=False)
    payment_method = db.Column(db.String(40), default='')
    payment_status = db.Column(db.String(20), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)
    payment_proof = db.Column(db.String(300))
    status = db.Column(db.String(20), nullable=False, default=ORDER_STATUS_PENDING, index=True)
    created_at = db.Column(db.DateTime, default=utc_now_naive, index=True)
    updated_at = db.Column(db.DateTime, default=utc_now_naive, onupdate=utc_now_naive)

    @property
    def status_label(self):
        return ORDER_STATUS_LABELS.get(self.status, self.status)

    @property
    def payment_status_label(self):
        return PAYMENT_STATUS_LABELS.get(self.payment_status, self.payment_status)

    @property
    def service_label(self):
        return SERVICE_TYPE_LABELS.get(self.service_type, self.service_type)

    def to_dict(self):
        return {
            'id': self.id,
            'customer_name': self.customer_name,
            'customer_email': self.customer_email,
            'customer_telegram': self.customer_telegram,
            'service_type': self.service_type,
            'project_description': self.project_description,
            'project_requirements': self.project_requirements,
            'budget_range': self.budget_range,
            'timeline': self.timeline,
            'payment_method': self.payment_method,
            'payment_status': self.payment_status,
            'payment_proof': self.payment_proof,
            'status': self.status,
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at),
        }


class ContactMessage(db.Model):
    __tablename__ = 'contact_messages'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), nullable=False)
    project = db.Column(db.String(300))
    message = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=MESSAGE_STATUS_UNREAD, index=True)
    admin_notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utc_now_naive, index=True)
    updated_at = db.Column(db.DateTime, default=utc_now_naive, onupdate=utc_now_naive)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'project': self.project,
            'message': self.message,
            'status': self.status,
            'admin_notes': self.admin_notes,
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at),
        }


class Media(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    filename = db.Column(db.String(300), nullable=False)
    file_path = db.Column(db.String(500), nullable=False)
    file_size = db.Column(db.Integer)
    mime_type = db.Column(db.String(100))
    created_at = db.Column(db.DateTime, default=utc_now_naive)


class AuthRateLimitBucket(db.Model):
    __table_args__ = (
        db.UniqueConstraint('scope', 'ip', name='uq_auth_rate_limit_scope_ip'),
        db.Index('ix_auth_rate_limit_scope_reset_at', 'scope', 'reset_at'),
    )

    id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(db.String(80), nullable=False, index=True)
    ip = db.Column(db.String(64), nullable=False, index=True)
    count = db.Column(db.Integer, nullable=False, default=0)
    reset_at = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, default=utc_now_naive)
    updated_at = db.Column(db.DateTime, default=utc_now_naive, onupdate=utc_now_naive)


# Table names exposed through the backend collaborator.
TABLES = {
    'content_sections': ContentSection,
    'projects': Project,
    'reviews': Review,
    'orders': Order,
    'contact_messages': ContactMessage,
    'users': User,
    'user_roles': UserRole,
}
