from flask import Blueprint, current_app, flash, jsonify, redirect, render_template, request, session, url_for
from flask_login import current_user
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from ..backend import BackendError, get_backend
from ..content import get_content_store
from ..content_schemas import build_page_context
from ..models import (
    db,
    ContactMessage,
    Order,
    Project,
    Review,
    User,
    MESSAGE_STATUS_UNREAD,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_PENDING,
    PAYMENT_METHOD_LABELS,
    PAYMENT_METHODS_REQUIRING_PROOF,
    PAYMENT_STATUS_PENDING,
    SERVICE_TYPE_LABELS,
    TIMELINE_LABELS,
)
from ..notifications import (
    payment_instructions,
    send_contact_notification,
    send_order_admin_notification,
    send_order_confirmation,
)
from ..projects import ProjectAggregator, fetch_approved_reviews, review_summary
from ..security import (
    CONTACT_FORM_SCOPE,
    LOGIN_LIMIT,
    LOGIN_SCOPE,
    LOGIN_WINDOW_SECONDS,
    ORDER_FORM_SCOPE,
    clear_attempts,
    is_rate_limited,
    register_attempt,
)
from ..utils import clean_text, is_valid_email, parse_int

main_bp = Blueprint('main', __name__)
AUTH_DUMMY_HASH = generate_password_hash('portfolio::dummy-auth-check')

# JSON body keys accepted by the order API, mapped to form field names.
ORDER_API_FIELDS = {
    'customerName': 'customer_name',
    'customerEmail': 'customer_email',
    'customerTelegram': 'customer_telegram',
    'serviceType': 'service_type',
    'projectDescription': 'project_description',
    'projectRequirements': 'project_requirements',
    'budgetRange': 'budget_range',
    'timeline': 'timeline',
    'paymentMethod': 'payment_method',
    'paymentProof': 'payment_proof',
}


def validate_order_payload(data):
    """Normalise raw order input; returns (values, errors)."""
    requirements = data.get('project_requirements') or ''
    if isinstance(requirements, (list, tuple)):
        requirements = '\n'.join(str(item).strip() for item in requirements if str(item).strip())
    values = {
        'customer_name': clean_text(data.get('customer_name'), 200),
        'customer_email': clean_text(data.get('customer_email'), 200).lower(),
        'customer_telegram': clean_text(data.get('customer_telegram'), 120),
        'service_type': clean_text(data.get('service_type'), 120),
        'project_description': clean_text(data.get('project_description'), 5000),
        'project_requirements': clean_text(requirements, 5000),
        'budget_range': clean_text(data.get('budget_range'), 60),
        'timeline': clean_text(data.get('timeline'), 60),
        'payment_method': clean_text(data.get('payment_method'), 40).lower(),
        'payment_proof': clean_text(data.get('payment_proof'), 300),
    }
    errors = []
    required = ('customer_name', 'customer_email', 'service_type', 'project_description', 'budget_range', 'timeline')
    if not all(values[key] for key in required):
        errors.append('Please fill in all required fields.')
    if values['customer_email'] and not is_valid_email(values['customer_email']):
        errors.append('Please provide a valid email address.')
    if values['service_type'] and values['service_type'] not in SERVICE_TYPE_LABELS:
        errors.append('Please choose a valid service type.')
    if values['timeline'] and values['timeline'] not in TIMELINE_LABELS:
        errors.append('Please choose a valid timeline.')
    if values['payment_method'] and values['payment_method'] not in PAYMENT_METHOD_LABELS:
        errors.append('Please choose a valid payment method.')
    if values['payment_method'] in PAYMENT_METHODS_REQUIRING_PROOF and not values['payment_proof']:
        errors.append('Please provide the transaction ID or payment reference.')
    return values, errors


def create_order(values):
    fields = dict(values)
    for key in ('customer_telegram', 'project_requirements', 'payment_proof'):
        fields[key] = fields[key] or None
    order = Order(status=ORDER_STATUS_PENDING, payment_status=PAYMENT_STATUS_PENDING, **fields)
    db.session.add(order)
    db.session.commit()
    current_app.logger.info(f'Order saved (id={order.id}, service={order.service_type})')
    confirmation_sent = send_order_confirmation(order)
    admin_notified = send_order_admin_notification(order)
    current_app.logger.info(f'Order email results: confirmation={confirmation_sent} admin={admin_notified}')
    return order


def _rate_limited(scope, limit_key, window_key, default_limit):
    window = current_app.config.get(window_key, 3600)
    limited, seconds = is_rate_limited(scope, current_app.config.get(limit_key, default_limit), window)
    if not limited:
        register_attempt(scope, window)
    return limited, seconds


@main_bp.route('/')
def index():
    store = get_content_store()
    backend = get_backend()
    page = build_page_context(store.active_sections)

    aggregator = ProjectAggregator(backend)
    aggregator.refresh()
    reviews_error = None
    try:
        reviews = fetch_approved_reviews(backend)
    except BackendError as exc:
        current_app.logger.warning(f'Reviews fetch failed: {exc}')
        reviews, reviews_error = [], str(exc)

    return render_template(
        'index.html',
        page=page,
        content_error=store.error,
        projects=aggregator.projects,
        projects_error=aggregator.error,
        reviews=reviews,
        reviews_error=reviews_error,
        review_stats=review_summary(reviews),
        service_choices=SERVICE_TYPE_LABELS,
        timeline_choices=TIMELINE_LABELS,
        payment_choices=PAYMENT_METHOD_LABELS,
        proof_methods=sorted(PAYMENT_METHODS_REQUIRING_PROOF),
    )


@main_bp.route('/auth', methods=['GET', 'POST'])
def auth():
    admin_intent = (request.values.get('admin') or '') == '1'
    destination = url_for('admin.shell') if admin_intent else url_for('main.index')
    if current_user.is_authenticated and request.method == 'GET':
        return redirect(destination)

    if request.method == 'POST':
        limited, seconds = is_rate_limited(LOGIN_SCOPE, LOGIN_LIMIT, LOGIN_WINDOW_SECONDS)
        if limited:
            flash(f'Too many login attempts. Try again in {seconds} seconds.', 'danger')
            return render_template('auth.html', admin_intent=admin_intent), 429

        email = clean_text(request.form.get('email'), 200).lower()
        password = request.form.get('password', '')
        user = User.query.filter_by(email=email).first() if email else None
        if user:
            password_ok = user.check_password(password)
        else:
            # Keep response timing closer for unknown emails.
            check_password_hash(AUTH_DUMMY_HASH, password or '')
            password_ok = False

        if user and password_ok:
            clear_attempts(LOGIN_SCOPE)
            session.clear()
            get_backend().sign_in(user)
            current_app.logger.info(f'User signed in (id={user.id})')
            return redirect(destination)

        attempts = register_attempt(LOGIN_SCOPE, LOGIN_WINDOW_SECONDS)
        remaining = max(0, LOGIN_LIMIT - attempts)
        if remaining == 0:
            flash('Too many failed attempts. Please wait 5 minutes and try again.', 'danger')
        else:
            flash(f'Invalid credentials. {remaining} attempt(s) remaining before temporary lock.', 'danger')
    return render_template('auth.html', admin_intent=admin_intent)


@main_bp.route('/auth/logout', methods=['POST'])
def logout():
    get_backend().sign_out()
    flash('You have been signed out.', 'success')
    if (request.form.get('admin') or '') == '1':
        return redirect(url_for('main.auth', admin=1))
    return redirect(url_for('main.index'))


@main_bp.route('/order', methods=['POST'])
def order():
    limited, seconds = _rate_limited(ORDER_FORM_SCOPE, 'ORDER_FORM_LIMIT', 'ORDER_FORM_WINDOW_SECONDS', 8)
    if limited:
        flash(f'Too many orders from this IP. Please wait {seconds} seconds and try again.', 'danger')
        return redirect(url_for('main.index', _anchor='order'))

    values, errors = validate_order_payload(request.form)
    if errors:
        for message in errors:
            flash(message, 'danger')
        return redirect(url_for('main.index', _anchor='order'))

    placed = create_order(values)
    flash(f'Order #{placed.id} submitted successfully! A confirmation email is on its way.', 'success')
    for line in payment_instructions(placed.payment_method, placed.budget_range):
        flash(line, 'info')
    return redirect(url_for('main.index', _anchor='order'))


@main_bp.route('/api/submit-order', methods=['POST'])
def api_submit_order():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({'error': 'Request body must be a JSON object.'}), 400

    limited, seconds = _rate_limited(ORDER_FORM_SCOPE, 'ORDER_FORM_LIMIT', 'ORDER_FORM_WINDOW_SECONDS', 8)
    if limited:
        return jsonify({'error': f'Too many orders. Retry in {seconds} seconds.'}), 429

    values, errors = validate_order_payload({field: payload.get(key) for key, field in ORDER_API_FIELDS.items()})
    if errors:
        return jsonify({'error': errors[0], 'errors': errors}), 400
    try:
        placed = create_order(values)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception('Order submission failed.')
        return jsonify({'error': 'Failed to submit order.'}), 500
    return jsonify({'success': True, 'order': placed.to_dict()})


@main_bp.route('/contact', methods=['POST'])
def contact():
    limited, seconds = _rate_limited(CONTACT_FORM_SCOPE, 'CONTACT_FORM_LIMIT', 'CONTACT_FORM_WINDOW_SECONDS', 12)
    if limited:
        flash(f'Too many contact submissions from this IP. Please wait {seconds} seconds and try again.', 'danger')
        return redirect(url_for('main.index', _anchor='contact'))

    name = clean_text(request.form.get('name', ''), 200)
    email = clean_text(request.form.get('email', ''), 200)
    project = clean_text(request.form.get('project', ''), 300)
    message = clean_text(request.form.get('message', ''), 5000)

    if not name or not email or not message:
        flash('Name, email, and message are required.', 'danger')
        return redirect(url_for('main.index', _anchor='contact'))
    if not is_valid_email(email):
        flash('Please provide a valid email address.', 'danger')
        return redirect(url_for('main.index', _anchor='contact'))

    submission = ContactMessage(
        name=name,
        email=email,
        project=project or None,
        message=message,
        status=MESSAGE_STATUS_UNREAD,
    )
    db.session.add(submission)
    db.session.commit()
    current_app.logger.info(f'Contact message saved (id={submission.id})')
    result = send_contact_notification(submission)
    current_app.logger.info(f'Email notification result: {result}')
    flash("Thank you for your message! I'll get back to you soon.", 'success')
    return redirect(url_for('main.index', _anchor='contact'))


def _completed_orders_for(email):
    return Order.query.filter(
        func.lower(Order.customer_email) == email,
        Order.status == ORDER_STATUS_COMPLETED,
    ).order_by(Order.created_at.desc()).all()


@main_bp.route('/reviews/lookup')
def review_lookup():
    email = clean_text(request.args.get('email', ''), 200).lower()
    orders = []
    if email:
        if not is_valid_email(email):
            flash('Please enter a valid email address.', 'danger')
        else:
            orders = _completed_orders_for(email)
            if not orders:
                flash(
                    "We couldn't find any completed orders with this email address. "
                    'Please check your email or contact support if you believe this is an error.',
                    'warning',
                )
    return render_template('review_form.html', email=email, orders=orders)


@main_bp.route('/reviews', methods=['POST'])
def submit_review():
    email = clean_text(request.form.get('email', ''), 200).lower()
    order_id = parse_int(request.form.get('order_id'), default=0)
    reviewer_name = clean_text(request.form.get('reviewer_name', ''), 200)
    rating = parse_int(request.form.get('rating'), default=5, min_value=1, max_value=5)
    review_text = clean_text(request.form.get('review_text', ''), 3000)
    back = url_for('main.review_lookup', email=email)

    selected = next((item for item in _completed_orders_for(email) if item.id == order_id), None) if email else None
    if selected is None:
        flash('Please select an order to review.', 'danger')
        return redirect(back)
    if not review_text:
        flash('Please write your review.', 'danger')
        return redirect(back)

    project = Project.query.filter_by(title=selected.service_type).first()
    review = Review(
        reviewer_name=reviewer_name or selected.customer_name,
        reviewer_email=email,
        order_id=selected.id,
        project_id=project.id if project else None,
        user_id=current_user.id if current_user.is_authenticated else None,
        rating=rating,
        review_text=review_text,
        is_approved=False,
        is_featured=False,
    )
    db.session.add(review)
    db.session.commit()
    current_app.logger.info(f'Review submitted (id={review.id}, order={selected.id})')
    flash('Thank you for your feedback! Your review will be visible after admin approval.', 'success')
    return redirect(url_for('main.index', _anchor='reviews'))


@main_bp.route('/api/content-sections')
def api_content_sections():
    store = get_content_store()
    body = {'sections': store.active_sections}
    if store.error:
        body['error'] = store.error
    return jsonify(body)


@main_bp.route('/api/projects')
def api_projects():
    aggregator = ProjectAggregator(get_backend())
    if not aggregator.refresh():
        return jsonify({'projects': [], 'error': aggregator.error}), 503
    return jsonify({'projects': aggregator.projects})


@main_bp.route('/api/reviews')
def api_reviews():
    try:
        reviews = fetch_approved_reviews(get_backend())
    except BackendError as exc:
        return jsonify({'reviews': [], 'error': str(exc)}), 503
    public = [{key: value for key, value in review.items() if key != 'reviewer_email'} for review in reviews]
    return jsonify({'reviews': public, 'summary': review_summary(reviews)})
