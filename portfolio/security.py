"""IP rate limiting, rich-text sanitising and image upload validation."""
import os
import uuid
from datetime import timedelta

import bleach
from flask import current_app
from PIL import Image, UnidentifiedImageError
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.utils import secure_filename

from .models import AuthRateLimitBucket, Media, db
from .utils import get_request_ip, utc_now_naive

LOGIN_SCOPE = 'auth_login'
CONTACT_FORM_SCOPE = 'contact_form'
ORDER_FORM_SCOPE = 'order_form'
LOGIN_LIMIT = 5
LOGIN_WINDOW_SECONDS = 300

ALLOWED_RICH_TEXT_TAGS = [
    'p', 'br', 'strong', 'em', 'b', 'i', 'u', 'blockquote', 'code', 'pre',
    'ul', 'ol', 'li', 'h2', 'h3', 'h4', 'a', 'span',
]
ALLOWED_RICH_TEXT_ATTRIBUTES = {
    '*': ['class'],
    'a': ['href', 'title', 'target', 'rel'],
}
ALLOWED_RICH_TEXT_PROTOCOLS = ['http', 'https', 'mailto']
EXTENSION_MIME_TYPES = {
    'png': {'image/png'},
    'jpg': {'image/jpeg'},
    'jpeg': {'image/jpeg'},
    'gif': {'image/gif'},
    'webp': {'image/webp'},
}

_cleanup_call_counter = 0


def sanitize_html(value, max_length=100000):
    html = (value or '').strip()
    cleaned = bleach.clean(
        html,
        tags=ALLOWED_RICH_TEXT_TAGS,
        attributes=ALLOWED_RICH_TEXT_ATTRIBUTES,
        protocols=ALLOWED_RICH_TEXT_PROTOCOLS,
        strip=True,
    )
    return cleaned[:max_length]


def _cleanup_expired_buckets():
    """Periodically purge expired rate limit buckets to prevent table bloat."""
    now = utc_now_naive()
    try:
        AuthRateLimitBucket.query.filter(AuthRateLimitBucket.reset_at < now).delete(synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception('Expired rate limit bucket cleanup failed.')


def get_rate_limit_bucket(scope, window_seconds):
    global _cleanup_call_counter
    _cleanup_call_counter += 1
    if _cleanup_call_counter % 50 == 0:
        _cleanup_expired_buckets()

    ip = get_request_ip()
    now = utc_now_naive()
    bucket = AuthRateLimitBucket.query.filter_by(scope=scope, ip=ip).first()
    if not bucket:
        bucket = AuthRateLimitBucket(
            scope=scope,
            ip=ip,
            count=0,
            reset_at=now + timedelta(seconds=window_seconds),
        )
        db.session.add(bucket)
        db.session.commit()
        return bucket
    if bucket.reset_at <= now:
        bucket.count = 0
        bucket.reset_at = now + timedelta(seconds=window_seconds)
        db.session.commit()
    return bucket


def is_rate_limited(scope, limit, window_seconds):
    bucket = get_rate_limit_bucket(scope, window_seconds)
    if bucket.count < limit:
        return False, 0
    seconds = max(1, int((bucket.reset_at - utc_now_naive()).total_seconds()))
    return True, seconds


def register_attempt(scope, window_seconds):
    bucket = get_rate_limit_bucket(scope, window_seconds)
    bucket.count += 1
    db.session.commit()
    return bucket.count


def clear_attempts(scope):
    bucket = AuthRateLimitBucket.query.filter_by(scope=scope, ip=get_request_ip()).first()
    if bucket:
        db.session.delete(bucket)
        db.session.commit()


def allowed_file(filename):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in current_app.config['ALLOWED_EXTENSIONS']


def safe_upload_path(stored_name):
    upload_root = os.path.abspath(current_app.config['UPLOAD_FOLDER'])
    raw_name = (stored_name or '').strip()
    safe_name = secure_filename(raw_name)
    if not safe_name or safe_name != raw_name:
        return None, None
    full_path = os.path.abspath(os.path.join(upload_root, safe_name))
    try:
        if os.path.commonpath([upload_root, full_path]) != upload_root:
            return None, None
    except ValueError:
        return None, None
    return safe_name, full_path


def validate_uploaded_file(file):
    if not file or not file.filename:
        return False

    filename = secure_filename(file.filename)
    if not filename or len(filename) > 180 or not allowed_file(filename):
        return False

    extension = filename.rsplit('.', 1)[1].lower()
    mime_type = (file.mimetype or '').split(';', 1)[0].lower()
    allowed_mimes = current_app.config.get('ALLOWED_UPLOAD_MIME_TYPES', set())
    if (
        mime_type not in allowed_mimes
        or extension not in EXTENSION_MIME_TYPES
        or mime_type not in EXTENSION_MIME_TYPES[extension]
    ):
        return False

    max_pixels = max(1, int(current_app.config.get('MAX_UPLOAD_IMAGE_PIXELS', 40_000_000)))
    file.stream.seek(0)
    try:
        with Image.open(file.stream) as image:
            width, height = image.size
            if width < 1 or height < 1 or (width * height) > max_pixels:
                return False
            image.verify()
        return True
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError):
        return False
    finally:
        file.stream.seek(0)


def save_upload(file):
    if not validate_uploaded_file(file):
        return None
    filename = secure_filename(file.filename)
    unique_name = f"{uuid.uuid4().hex[:16]}_{filename}"
    full_path = os.path.join(current_app.config['UPLOAD_FOLDER'], unique_name)
    file.save(full_path)
    media = Media(
        filename=filename,
        file_path=unique_name,
        file_size=os.path.getsize(full_path),
        mime_type=(file.mimetype or ''),
    )
    db.session.add(media)
    db.session.commit()
    return unique_name
