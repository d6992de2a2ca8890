import json
import os
from collections import Counter
from datetime import datetime, timedelta
from functools import wraps

from flask import (
    Blueprint,
    Response,
    abort,
    current_app,
    flash,
    g,
    redirect,
    render_template,
    request,
    send_from_directory,
    url_for,
)
from sqlalchemy import func, or_

from ..admin_access import ADMIN_TAB_LABELS, ADMIN_TABS, AdminAccess, normalize_tab
from ..analytics import empty_analytics
from ..backend import BackendError, get_backend
from ..content import get_content_store
from ..content_schemas import SECTION_HEADINGS, SECTION_SCHEMAS
from ..forms import SECTION_TYPE_CHOICES, ContentSectionForm, ProjectForm
from ..models import (
    db,
    ContactMessage,
    ContentSection,
    Order,
    Project,
    Review,
    User,
    UserRole,
    MESSAGE_STATUSES,
    ORDER_STATUSES,
    ORDER_STATUS_LABELS,
    PAYMENT_METHOD_LABELS,
    PAYMENT_STATUSES,
    PAYMENT_STATUS_LABELS,
    ROLE_ADMIN,
    SERVICE_TYPE_LABELS,
    USER_ROLE_CHOICES,
    normalize_message_status,
    normalize_order_status,
    normalize_payment_status,
    normalize_user_role,
    utc_now_naive,
)
from ..notifications import send_order_status_update, send_payment_status_update
from ..projects import attach_review_stats
from ..security import safe_upload_path, sanitize_html, save_upload
from ..seed import ensure_default_settings
from ..utils import clean_text, escape_like, parse_int

admin_bp = Blueprint('admin', __name__)


def admin_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        access = AdminAccess(
            get_backend(),
            login_url=url_for('main.auth', admin=1),
            home_url=url_for('main.index'),
        )
        access.resolve()
        if not access.authorized:
            if access.notice:
                flash(access.notice, 'danger')
            return redirect(access.redirect_to)
        g.admin_access = access
        # A sign-out during the view flips the gate to denied with the login URL.
        access.listen()
        try:
            return view(*args, **kwargs)
        finally:
            access.close()
    return wrapper


def _back_to(tab, **params):
    return redirect(url_for('admin.shell', tab=tab, **params))


def _flash_form_errors(form):
    for errors in form.errors.values():
        for message in errors:
            flash(message, 'danger')


def estimate_budget_value(budget_range):
    """Rough revenue figure for a budget string: "a-b" is the midpoint, "a+" is a."""
    raw = (budget_range or '').replace('$', '').replace(',', '').strip()
    if not raw:
        return 0.0
    try:
        if raw.endswith('+'):
            return float(raw[:-1])
        if '-' in raw:
            low, high = raw.split('-', 1)
            return (float(low) + float(high)) / 2
        return float(raw)
    except ValueError:
        return 0.0


def build_dashboard_stats(orders, messages, users_total, projects_total, reviews_total, today=None):
    today = today or utc_now_naive().date()
    created_days = [_created_date(order) for order in orders]
    trend = []
    for offset in range(6, -1, -1):
        day = today - timedelta(days=offset)
        trend.append({'date': day.isoformat(), 'count': sum(1 for created in created_days if created == day)})
    service_counts = Counter(order.get('service_type') for order in orders)
    recent = sorted(orders, key=lambda order: order.get('created_at') or '', reverse=True)[:5]
    return {
        'total_orders': len(orders),
        'completed_orders': sum(1 for order in orders if order.get('status') == 'completed'),
        'pending_orders': sum(1 for order in orders if order.get('status') == 'pending'),
        'total_revenue': sum(estimate_budget_value(order.get('budget_range')) for order in orders),
        'today_orders': sum(1 for created in created_days if created == today),
        'order_trend': trend,
        'trend_peak': max([point['count'] for point in trend] + [1]),
        'top_services': [
            {'service': SERVICE_TYPE_LABELS.get(service, service), 'count': count}
            for service, count in service_counts.most_common(5)
        ],
        'total_users': users_total,
        'total_projects': projects_total,
        'total_reviews': reviews_total,
        'total_messages': len(messages),
        'unread_messages': sum(1 for message in messages if message.get('status') == 'unread'),
        'recent_orders': recent,
    }


def _created_date(row):
    raw = row.get('created_at') or ''
    try:
        return datetime.fromisoformat(raw).date()
    except (TypeError, ValueError):
        return None


# Panel loaders, one per tab. Only the active tab's loader runs.

def _load_dashboard():
    backend = get_backend()
    try:
        return {
            'stats': build_dashboard_stats(
                backend.select('orders'),
                backend.select('contact_messages'),
                users_total=len(backend.select('users')),
                projects_total=len(backend.select('projects')),
                reviews_total=len(backend.select('reviews')),
            ),
        }
    except BackendError as exc:
        current_app.logger.warning(f'Dashboard stats failed: {exc}')
        return {'stats': None, 'error': str(exc)}


def _load_orders():
    status_filter = clean_text(request.args.get('status', ''), 20).lower()
    payment_filter = clean_text(request.args.get('payment', ''), 20).lower()
    search = clean_text(request.args.get('q', ''), 120)
    query = Order.query
    if status_filter in ORDER_STATUSES:
        query = query.filter(Order.status == status_filter)
    if payment_filter in PAYMENT_STATUSES:
        query = query.filter(Order.payment_status == payment_filter)
    if search:
        pattern = f"%{escape_like(search.lower())}%"
        query = query.filter(or_(
            func.lower(Order.customer_name).like(pattern, escape='\\'),
            func.lower(Order.customer_email).like(pattern, escape='\\'),
            func.lower(Order.project_description).like(pattern, escape='\\'),
        ))
    return {
        'items': query.order_by(Order.created_at.desc()).all(),
        'status_filter': status_filter,
        'payment_filter': payment_filter,
        'search': search,
        'order_statuses': ORDER_STATUS_LABELS,
        'payment_statuses': PAYMENT_STATUS_LABELS,
        'payment_methods': PAYMENT_METHOD_LABELS,
    }


def _load_messages():
    status_filter = clean_text(request.args.get('status', ''), 20).lower()
    query = ContactMessage.query
    if status_filter in MESSAGE_STATUSES:
        query = query.filter(ContactMessage.status == status_filter)
    return {
        'items': query.order_by(ContactMessage.created_at.desc()).all(),
        'status_filter': status_filter,
        'message_statuses': MESSAGE_STATUSES,
    }


def _load_content():
    section, created = ensure_default_settings()
    if created:
        flash('Default settings section created.', 'info')
    store = get_content_store()
    edit_id = parse_int(request.args.get('edit'), default=0)
    return {
        'sections': store.sections,
        'store_error': store.error,
        'editing': db.session.get(ContentSection, edit_id) if edit_id else None,
        'section_types': SECTION_TYPE_CHOICES,
        'schemas': SECTION_SCHEMAS,
        'headings': SECTION_HEADINGS,
    }


def _load_projects():
    backend = get_backend()
    edit_id = parse_int(request.args.get('edit'), default=0)
    try:
        projects = attach_review_stats(
            backend.select('projects', order_by='sort_order'),
            backend.select('reviews', is_approved=True),
        )
        error = None
    except BackendError as exc:
        projects, error = [], str(exc)
    return {
        'items': projects,
        'error': error,
        'editing': db.session.get(Project, edit_id) if edit_id else None,
    }


def _load_reviews():
    edit_id = parse_int(request.args.get('edit'), default=0)
    return {
        'items': Review.query.order_by(Review.created_at.desc()).all(),
        'editing': db.session.get(Review, edit_id) if edit_id else None,
        'project_titles': {project.id: project.title for project in Project.query.all()},
    }


def _load_users():
    roles = {}
    for row in UserRole.query.all():
        # Prefer admin when a user has several role rows.
        if roles.get(row.user_id) != ROLE_ADMIN:
            roles[row.user_id] = row.role
    users = User.query.order_by(User.created_at.desc()).all()
    items = [{'user': user, 'role': roles.get(user.id, 'user')} for user in users]
    return {
        'items': items,
        'role_choices': USER_ROLE_CHOICES,
        'admin_count': sum(1 for item in items if item['role'] == ROLE_ADMIN),
    }


def _load_analytics():
    return {'analytics': empty_analytics()}


PANEL_LOADERS = {
    'dashboard': _load_dashboard,
    'orders': _load_orders,
    'messages': _load_messages,
    'content': _load_content,
    'projects': _load_projects,
    'reviews': _load_reviews,
    'users': _load_users,
    'analytics': _load_analytics,
}


@admin_bp.route('/uploads/<filename>')
def uploaded_file(filename):
    safe_filename, full_path = safe_upload_path(filename)
    if not safe_filename or not full_path or not os.path.exists(full_path):
        abort(404)
    return send_from_directory(current_app.config['UPLOAD_FOLDER'], safe_filename, conditional=True, etag=True)


@admin_bp.route('/')
@admin_required
def shell():
    active_tab = normalize_tab(request.args.get('tab'))
    panel = PANEL_LOADERS[active_tab]()
    return render_template(
        'admin/shell.html',
        tabs=[(tab, ADMIN_TAB_LABELS[tab]) for tab in ADMIN_TABS],
        active_tab=active_tab,
        panel=panel,
        admin_user=g.admin_access.user,
    )


@admin_bp.route('/export')
@admin_required
def export():
    backend = get_backend()
    payload = {table: backend.select(table) for table in ('orders', 'users', 'projects', 'reviews')}
    payload['export_date'] = utc_now_naive().isoformat()
    filename = f"admin-export-{utc_now_naive().date().isoformat()}.json"
    return Response(
        json.dumps(payload, indent=2, ensure_ascii=False),
        mimetype='application/json',
        headers={'Content-Disposition': f'attachment; filename="{filename}"'},
    )


@admin_bp.route('/upload', methods=['POST'])
@admin_required
def upload():
    tab = normalize_tab(request.form.get('tab'))
    stored_name = save_upload(request.files.get('file'))
    if not stored_name:
        flash('Upload rejected. Use a PNG, JPEG, GIF or WebP image.', 'danger')
    else:
        flash(f"Uploaded: {url_for('admin.uploaded_file', filename=stored_name)}", 'success')
    return _back_to(tab)


@admin_bp.route('/logout', methods=['POST'])
@admin_required
def logout():
    get_backend().sign_out()
    flash('You have been signed out.', 'success')
    return redirect(g.admin_access.redirect_to)


# Orders

@admin_bp.route('/orders/<int:id>/status', methods=['POST'])
@admin_required
def order_status(id):
    order = db.session.get(Order, id) or abort(404)
    new_status = normalize_order_status(request.form.get('status'), default=order.status)
    if new_status != order.status:
        order.status = new_status
        db.session.commit()
        send_order_status_update(order)
        flash(f'Order #{order.id} marked {order.status_label}.', 'success')
    return _back_to('orders')


@admin_bp.route('/orders/<int:id>/payment', methods=['POST'])
@admin_required
def order_payment(id):
    order = db.session.get(Order, id) or abort(404)
    new_status = normalize_payment_status(request.form.get('payment_status'), default=order.payment_status)
    if new_status != order.payment_status:
        order.payment_status = new_status
        db.session.commit()
        send_payment_status_update(order)
        flash(f'Order #{order.id} payment {order.payment_status_label.lower()}.', 'success')
    return _back_to('orders')


@admin_bp.route('/orders/<int:id>/delete', methods=['POST'])
@admin_required
def order_delete(id):
    db.session.delete(db.session.get(Order, id) or abort(404))
    db.session.commit()
    flash('Order deleted.', 'success')
    return _back_to('orders')


# Messages

@admin_bp.route('/messages/<int:id>/status', methods=['POST'])
@admin_required
def message_status(id):
    item = db.session.get(ContactMessage, id) or abort(404)
    item.status = normalize_message_status(request.form.get('status'), default=item.status)
    db.session.commit()
    flash('Message status updated.', 'success')
    return _back_to('messages')


@admin_bp.route('/messages/<int:id>/notes', methods=['POST'])
@admin_required
def message_notes(id):
    item = db.session.get(ContactMessage, id) or abort(404)
    item.admin_notes = clean_text(request.form.get('admin_notes', ''), 5000) or None
    db.session.commit()
    flash('Notes saved.', 'success')
    return _back_to('messages')


@admin_bp.route('/messages/<int:id>/delete', methods=['POST'])
@admin_required
def message_delete(id):
    db.session.delete(db.session.get(ContactMessage, id) or abort(404))
    db.session.commit()
    flash('Message deleted.', 'success')
    return _back_to('messages')


# Content sections

@admin_bp.route('/content/save', methods=['POST'])
@admin_required
def content_save():
    section_id = parse_int(request.form.get('id'), default=0)
    section = db.session.get(ContentSection, section_id) if section_id else None
    if section_id and section is None:
        abort(404)

    form = ContentSectionForm()
    if not form.validate():
        _flash_form_errors(form)
        return _back_to('content', edit=section_id or None)

    if section is None:
        section = ContentSection()
        db.session.add(section)
    section.section_type = form.section_type.data
    section.title = clean_text(form.title.data, 300) or None
    section.subtitle = clean_text(form.subtitle.data, 500) or None
    section.content = sanitize_html(form.content.data) or None
    section.image_url = clean_text(form.image_url.data, 500) or None
    section.is_active = form.is_active.data
    section.sort_order = form.sort_order.data or 0
    section.section_metadata = form.parsed_metadata
    db.session.commit()
    flash('Section saved.', 'success')
    return _back_to('content')


@admin_bp.route('/content/<int:id>/toggle', methods=['POST'])
@admin_required
def content_toggle(id):
    section = db.session.get(ContentSection, id) or abort(404)
    section.is_active = not bool(section.is_active)
    db.session.commit()
    flash(f"Section {'activated' if section.is_active else 'hidden'}.", 'success')
    return _back_to('content')


@admin_bp.route('/content/<int:id>/delete', methods=['POST'])
@admin_required
def content_delete(id):
    db.session.delete(db.session.get(ContentSection, id) or abort(404))
    db.session.commit()
    flash('Section deleted.', 'success')
    return _back_to('content')


# Projects

@admin_bp.route('/projects/save', methods=['POST'])
@admin_required
def project_save():
    project_id = parse_int(request.form.get('id'), default=0)
    project = db.session.get(Project, project_id) if project_id else None
    if project_id and project is None:
        abort(404)

    form = ProjectForm()
    if not form.validate():
        _flash_form_errors(form)
        return _back_to('projects', edit=project_id or None)

    if project is None:
        project = Project()
        db.session.add(project)
    project.title = clean_text(form.title.data, 300)
    project.description = clean_text(form.description.data, 5000) or None
    project.image_url = clean_text(form.image_url.data, 500) or None
    project.technologies = form.technology_list()
    project.github_url = clean_text(form.github_url.data, 500) or None
    project.demo_url = clean_text(form.demo_url.data, 500) or None
    project.category = clean_text(form.category.data, 100) or None
    project.is_featured = form.is_featured.data
    project.sort_order = form.sort_order.data or 0
    db.session.commit()
    flash('Project saved.', 'success')
    return _back_to('projects')


@admin_bp.route('/projects/<int:id>/feature', methods=['POST'])
@admin_required
def project_feature(id):
    project = db.session.get(Project, id) or abort(404)
    project.is_featured = not bool(project.is_featured)
    db.session.commit()
    return _back_to('projects')


@admin_bp.route('/projects/<int:id>/delete', methods=['POST'])
@admin_required
def project_delete(id):
    db.session.delete(db.session.get(Project, id) or abort(404))
    db.session.commit()
    flash('Project deleted.', 'success')
    return _back_to('projects')


# Reviews

@admin_bp.route('/reviews/<int:id>/toggle/<field>', methods=['POST'])
@admin_required
def review_toggle(id, field):
    if field not in ('is_approved', 'is_featured'):
        abort(404)
    review = db.session.get(Review, id) or abort(404)
    setattr(review, field, not bool(getattr(review, field)))
    db.session.commit()
    return _back_to('reviews')


@admin_bp.route('/reviews/<int:id>/edit', methods=['POST'])
@admin_required
def review_edit(id):
    review = db.session.get(Review, id) or abort(404)
    review.reviewer_name = clean_text(request.form.get('reviewer_name', ''), 200) or review.reviewer_name
    review.rating = parse_int(request.form.get('rating'), default=review.rating or 5, min_value=1, max_value=5)
    review.review_text = clean_text(request.form.get('review_text', ''), 3000) or review.review_text
    db.session.commit()
    flash('Review updated.', 'success')
    return _back_to('reviews')


@admin_bp.route('/reviews/<int:id>/delete', methods=['POST'])
@admin_required
def review_delete(id):
    db.session.delete(db.session.get(Review, id) or abort(404))
    db.session.commit()
    flash('Review deleted.', 'success')
    return _back_to('reviews')


# Users

@admin_bp.route('/users/<int:id>/role', methods=['POST'])
@admin_required
def user_role(id):
    user = db.session.get(User, id) or abort(404)
    new_role = normalize_user_role(request.form.get('role'))
    if user.id == g.admin_access.user['id'] and new_role != ROLE_ADMIN:
        flash('You cannot remove your own admin role.', 'danger')
        return _back_to('users')
    UserRole.query.filter_by(user_id=user.id).delete(synchronize_session=False)
    db.session.add(UserRole(user_id=user.id, role=new_role))
    db.session.commit()
    flash(f'{user.email} is now {new_role}.', 'success')
    return _back_to('users')
