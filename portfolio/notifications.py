import base64
import smtplib
import urllib.error
import urllib.parse
import urllib.request
from email.message import EmailMessage

from flask import current_app, has_request_context, request

from .models import PAYMENT_METHOD_LABELS, SERVICE_TYPE_LABELS, TIMELINE_LABELS

ORDER_STATUS_MESSAGES = {
    'pending': 'Your order has been received and is waiting for review.',
    'in_progress': "Development has started and we're actively working on your project.",
    'completed': 'Your project has been completed and is ready for delivery!',
    'cancelled': 'Your order has been cancelled. Please contact us for more information.',
}
PAYMENT_STATUS_MESSAGES = {
    'pending': "We're waiting for your payment to proceed with the project.",
    'paid': "Payment has been confirmed and we're proceeding with development.",
    'failed': 'There was an issue with your payment. Please try again or contact support.',
    'refunded': 'Your payment has been refunded. Please contact us for more information.',
}


def _safe_header_value(value, max_length=240):
    # Prevent header injection by stripping CR/LF and collapsing whitespace.
    cleaned = ' '.join((value or '').replace('\r', ' ').replace('\n', ' ').split())
    return cleaned[:max_length]


def _split_recipients(raw):
    recipients = []
    seen = set()
    for item in (raw or '').split(','):
        cleaned = _safe_header_value(item, max_length=320)
        normalized = cleaned.lower()
        if cleaned and normalized not in seen:
            recipients.append(cleaned)
            seen.add(normalized)
    return recipients


def _resolve_base_url():
    configured = (current_app.config.get('APP_BASE_URL') or '').rstrip('/')
    if configured:
        return configured
    if has_request_context():
        try:
            return (request.host_url or '').rstrip('/')
        except RuntimeError:
            return ''
    return ''


def _order_admin_url():
    return f"{_resolve_base_url()}/admin/?tab=orders"


def _parse_budget_amount(budget_range):
    try:
        return float((budget_range or '0').strip().lstrip('$').rstrip('+').split('-', 1)[0])
    except ValueError:
        return 0.0


def payment_instructions(payment_method, budget_range):
    budget = _parse_budget_amount(budget_range)
    local_amount = budget * float(current_app.config.get('BDT_PER_USD', 125.0))
    if payment_method == 'crypto':
        return [
            f"Send payment to TRC20 wallet: {current_app.config.get('PAYMENT_CRYPTO_WALLET')}",
            f"Amount: {budget:.2f} USDT",
            'Include your order ID in payment note',
            'Order will be processed after payment confirmation',
        ]
    if payment_method in ('bkash', 'nagad'):
        number_key = 'PAYMENT_BKASH_NUMBER' if payment_method == 'bkash' else 'PAYMENT_NAGAD_NUMBER'
        return [
            f"Send payment to {PAYMENT_METHOD_LABELS[payment_method]} number: {current_app.config.get(number_key)}",
            f"Amount: {local_amount:.2f} BDT (converted from ${budget:g} USD)",
            'Include your order ID in payment note',
            'Keep the transaction ID for reference',
        ]
    return ['Payment instructions will be provided separately']


def _order_summary_lines(order):
    return [
        f"Order: #{order.id}",
        f"Service: {SERVICE_TYPE_LABELS.get(order.service_type, order.service_type)}",
        f"Budget: {order.budget_range}",
        f"Timeline: {TIMELINE_LABELS.get(order.timeline, order.timeline)}",
        f"Payment Method: {PAYMENT_METHOD_LABELS.get(order.payment_method, order.payment_method or 'Not selected')}",
        f"Status: {order.status_label}",
        f"Payment Status: {order.payment_status_label}",
    ]


def _send_via_mailgun(subject, body, recipients, mail_from):
    """Send email via Mailgun HTTP API (no SMTP needed)."""
    api_key = (current_app.config.get('MAILGUN_API_KEY') or '').strip()
    domain = (current_app.config.get('MAILGUN_DOMAIN') or '').strip()
    if not api_key or not domain:
        return None

    url = f"https://api.mailgun.net/v3/{domain}/messages"
    data = urllib.parse.urlencode({
        'from': mail_from,
        'to': ', '.join(recipients),
        'subject': subject,
        'text': body,
    }).encode('utf-8')
    auth = base64.b64encode(f"api:{api_key}".encode()).decode()

    req = urllib.request.Request(url, data=data, method='POST')
    req.add_header('Authorization', f'Basic {auth}')
    try:
        with urllib.request.urlopen(req, timeout=15):  # nosec B310
            current_app.logger.info('Mailgun email sent successfully.')
            return True
    except urllib.error.HTTPError as e:
        error_body = e.read().decode('utf-8', errors='replace')
        current_app.logger.error(f'Mailgun API error {e.code}: {error_body}')
        return False
    except (urllib.error.URLError, OSError):
        current_app.logger.exception('Mailgun email delivery failed.')
        return False


def _send_via_smtp(subject, body, recipients, mail_from):
    host = (current_app.config.get('SMTP_HOST') or '').strip()
    if not host:
        current_app.logger.info('SMTP_HOST is not configured; skipping SMTP.')
        return None

    port = int(current_app.config.get('SMTP_PORT') or 587)
    username = current_app.config.get('SMTP_USERNAME') or ''
    password = current_app.config.get('SMTP_PASSWORD') or ''
    use_ssl = bool(current_app.config.get('SMTP_USE_SSL'))
    use_tls = bool(current_app.config.get('SMTP_USE_TLS'))

    message = EmailMessage()
    message['Subject'] = subject
    message['From'] = mail_from
    message['To'] = ', '.join(recipients)
    message.set_content(body)

    try:
        if use_ssl:
            smtp = smtplib.SMTP_SSL(host=host, port=port, timeout=12)
        else:
            smtp = smtplib.SMTP(host=host, port=port, timeout=12)

        with smtp:
            if use_tls and not use_ssl:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(message)
        return True
    except (smtplib.SMTPException, OSError):
        current_app.logger.exception('SMTP email delivery failed.')
        return False


def _send_email(subject, body, recipients):
    if not recipients:
        return False

    mail_from = _safe_header_value(current_app.config.get('MAIL_FROM') or 'no-reply@localhost', max_length=254)
    safe_subject = _safe_header_value(subject, max_length=240)

    result = _send_via_mailgun(safe_subject, body, recipients, mail_from)
    if result is not None:
        return result

    result = _send_via_smtp(safe_subject, body, recipients, mail_from)
    if result is not None:
        return result

    current_app.logger.info('No email provider configured (set MAILGUN_API_KEY+MAILGUN_DOMAIN or SMTP_HOST).')
    return False


def send_contact_notification(message):
    recipients = _split_recipients(current_app.config.get('CONTACT_NOTIFICATION_EMAILS'))
    if not recipients:
        return False

    project_text = _safe_header_value(message.project or 'General enquiry', max_length=180) or 'General enquiry'
    subject = f"[Portfolio] New contact message: {project_text}"
    body = "\n".join([
        "A new contact message has been received.",
        "",
        f"Name: {message.name}",
        f"Email: {message.email}",
        f"Project: {project_text}",
        "",
        "Message:",
        message.message or "",
        "",
        f"Admin URL: {_resolve_base_url()}/admin/?tab=messages",
    ])
    return _send_email(subject, body, recipients)


def send_order_confirmation(order):
    recipient = _safe_header_value(order.customer_email, max_length=320)
    if not recipient:
        return False
    subject = f"Order Confirmation #{order.id} - {order.service_label}"
    body = "\n".join([
        f"Hi {order.customer_name},",
        "",
        "Thank you for your order. Here is a summary:",
        "",
        *_order_summary_lines(order),
        "",
        "Project Description:",
        order.project_description or "",
        "",
        "Payment Instructions:",
        *[f"- {line}" for line in payment_instructions(order.payment_method, order.budget_range)],
        "",
        "We'll keep you updated on your order progress.",
    ])
    return _send_email(subject, body, [recipient])


def send_order_admin_notification(order):
    recipients = _split_recipients(current_app.config.get('ORDER_NOTIFICATION_EMAILS'))
    if not recipients:
        return False
    subject = f"[Portfolio] New order #{order.id} from {order.customer_name}"
    body = "\n".join([
        "A new order has been submitted.",
        "",
        *_order_summary_lines(order),
        f"Customer: {order.customer_name} <{order.customer_email}>",
        f"Telegram: {order.customer_telegram or 'Not provided'}",
        f"Payment Proof: {order.payment_proof or 'Not provided'}",
        "",
        "Project Description:",
        order.project_description or "",
        "",
        "Requirements:",
        order.project_requirements or "None listed",
        "",
        f"Admin URL: {_order_admin_url()}",
    ])
    return _send_email(subject, body, recipients)


def send_order_status_update(order):
    recipient = _safe_header_value(order.customer_email, max_length=320)
    if not recipient:
        return False
    subject = f"Order #{order.id} status update: {order.status_label}"
    body = "\n".join([
        f"Hi {order.customer_name},",
        "",
        ORDER_STATUS_MESSAGES.get(order.status, 'Your order status has been updated.'),
        "",
        *_order_summary_lines(order),
    ])
    return _send_email(subject, body, [recipient])


def send_payment_status_update(order):
    recipient = _safe_header_value(order.customer_email, max_length=320)
    if not recipient:
        return False
    subject = f"Order #{order.id} payment update: {order.payment_status_label}"
    body = "\n".join([
        f"Hi {order.customer_name},",
        "",
        PAYMENT_STATUS_MESSAGES.get(order.payment_status, 'Your payment status has been updated.'),
        "",
        *_order_summary_lines(order),
    ])
    return _send_email(subject, body, [recipient])
