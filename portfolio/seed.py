import os
import secrets

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .content_schemas import DEFAULT_BRAND_NAME
from .models import ROLE_ADMIN, ContentSection, Project, User, UserRole, db

SETTINGS_SORT_ORDER = 999

DEFAULT_SETTINGS_METADATA = {
    'brandName': DEFAULT_BRAND_NAME,
    'logoUrl': '',
    'links': {
        'fiverrUrl': 'https://fiverr.com',
        'telegramUrl': 'https://t.me/mushfiqmoon',
        'email': 'moonbd01717@gmail.com',
        'linkedin': 'https://www.linkedin.com/in/md-moshfiqur-rahman-951039232/',
        'facebook': 'https://www.facebook.com/mushfiqr.moon',
    },
}

DEFAULT_SECTIONS = [
    ('hero', 'Hero', '', 0, {
        'headline': 'I Build Bots That',
        'subheadline': 'Telegram, Discord, Web Automation & More |',
        'highlight': 'Automate Success',
        'stats': {'years': '2+', 'projects': '30+', 'rating': '5⭐'},
    }),
    ('about', 'About Md Moshfiqur Rahaman', '', 1, {}),
    ('services', 'My Services', 'Comprehensive bot development and automation solutions tailored to your business needs', 2, {}),
    ('portfolio', 'Featured Projects', 'Showcasing successful bot development projects that have delivered real value to clients', 3, {}),
    ('reviews', 'Client Reviews', 'Share your experience with our services. Only customers with completed orders can submit reviews.', 4, {}),
    ('contact', "Let's Work Together", 'Ready to automate your business processes? Get in touch for a free consultation and project quote.', 5, {}),
    ('order', 'Place Your Order', 'Choose your preferred way to order your custom bot or automation system', 6, {}),
]

DEFAULT_PROJECTS = [
    (
        'Telegram Shop Bot',
        'Storefront bot with catalogue browsing, cart, and payment confirmation inside Telegram.',
        ['Python', 'Telegram API', 'PostgreSQL'],
        'telegram',
    ),
    (
        'Crypto Signal Trader',
        'Automated trading bot that reads exchange signals and applies configurable risk limits.',
        ['Python', 'REST APIs', 'Redis'],
        'trading',
    ),
    (
        'Price Tracker Scraper',
        'Scheduled scraper that monitors product prices and reports changes to a dashboard.',
        ['Python', 'Web Scraping', 'React.js'],
        'automation',
    ),
]


def ensure_default_settings():
    """Create the ``settings`` section when none exists; returns (section, created)."""
    section = ContentSection.query.filter_by(section_type='settings').order_by(ContentSection.sort_order).first()
    if section:
        return section, False
    section = ContentSection(
        section_type='settings',
        title='Site Settings',
        subtitle='Global site configuration',
        is_active=True,
        sort_order=SETTINGS_SORT_ORDER,
        section_metadata=dict(DEFAULT_SETTINGS_METADATA),
    )
    db.session.add(section)
    db.session.commit()
    return section, True


def ensure_admin_user():
    email = (current_app.config.get('ADMIN_EMAIL') or 'admin@example.com').strip().lower()
    env_password = os.environ.get('ADMIN_PASSWORD') or ''

    admin = User.query.filter_by(email=email).first()
    if admin:
        # Always sync admin password with env var on startup.
        if env_password:
            admin.set_password(env_password)
    else:
        if not env_password:
            env_password = secrets.token_urlsafe(16)
            print(
                '[seed] ADMIN_PASSWORD not set. Seeded admin with a random password. '
                'Set ADMIN_PASSWORD and restart to rotate it to a known value.'
            )
        admin = User(email=email, display_name='Admin')
        admin.set_password(env_password)
        db.session.add(admin)
        db.session.flush()

    if not UserRole.query.filter_by(user_id=admin.id, role=ROLE_ADMIN).first():
        db.session.add(UserRole(user_id=admin.id, role=ROLE_ADMIN))
    db.session.commit()
    return admin


def seed_content():
    if ContentSection.query.first() is None:
        for section_type, title, subtitle, sort_order, metadata in DEFAULT_SECTIONS:
            db.session.add(ContentSection(
                section_type=section_type,
                title=title,
                subtitle=subtitle,
                is_active=True,
                sort_order=sort_order,
                section_metadata=metadata,
            ))
        db.session.commit()
    ensure_default_settings()

    if Project.query.first() is None:
        for i, (title, description, technologies, category) in enumerate(DEFAULT_PROJECTS):
            db.session.add(Project(
                title=title,
                description=description,
                technologies=technologies,
                category=category,
                is_featured=(i == 0),
                sort_order=i,
            ))
        db.session.commit()


def seed_database():
    try:
        ensure_admin_user()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception('Admin identity seeding failed.')
    try:
        seed_content()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception('Default content seeding failed.')
