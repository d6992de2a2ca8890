"""Typed view-models for the public page sections.

Each section type has a schema listing the metadata keys it reads, the type
each key must have and the value used when the key is missing, empty or of
the wrong type. Resolution never raises: any metadata, including ``None`` or
a non-dict, produces a complete view-model.
"""
import copy

DEFAULT_BRAND_NAME = "Mushfiq's Bots"
DEFAULT_FOOTER_BRAND_NAME = 'Md Moshfiqur Rahaman'
DEFAULT_FIVERR_URL = 'https://fiverr.com'
DEFAULT_ABOUT_COPY = (
    "I'm a bot automation expert specializing in creating intelligent solutions that streamline "
    "workflows, enhance user experiences, and drive business growth through cutting-edge "
    "automation technology."
)
LOGO_FALLBACK_GLYPH = '🤖'

ICON_GLYPHS = {
    'bot': '🤖',
    'code': '💻',
    'zap': '⚡',
    'globe': '🌐',
    'db': '🗄️',
    'cpu': '🧠',
    'msg': '💬',
    'up': '📈',
    'cog': '⚙️',
}

DEFAULT_SKILLS = [
    {'name': 'Telegram API', 'level': 97, 'icon': 'bot', 'color': 'text-primary'},
    {'name': 'React.js/JavaScript', 'level': 95, 'icon': 'code', 'color': 'text-secondary'},
    {'name': 'Python Development', 'level': 95, 'icon': 'code', 'color': 'text-primary'},
    {'name': 'Tailwind CSS', 'level': 94, 'icon': 'zap', 'color': 'text-secondary'},
    {'name': 'Web Scraping', 'level': 94, 'icon': 'globe', 'color': 'text-primary'},
    {'name': 'Database Integration', 'level': 94, 'icon': 'db', 'color': 'text-secondary'},
    {'name': 'AI Bot Development', 'level': 96, 'icon': 'cpu', 'color': 'text-primary'},
    {'name': 'API Integration', 'level': 94, 'icon': 'zap', 'color': 'text-secondary'},
]

DEFAULT_SERVICES = [
    {
        'icon': 'bot',
        'title': 'Telegram & Discord Bots',
        'description': 'Custom bots with payment integration, user management, and advanced features',
        'features': ['Payment Processing', 'User Authentication', 'Custom Commands', 'Database Integration'],
        'color': 'primary',
    },
    {
        'icon': 'msg',
        'title': 'Telegram Mini Apps',
        'description': 'Interactive web applications that run seamlessly within Telegram interface',
        'features': ['Web App Integration', 'Telegram Payments', 'User Data Access', 'Cross-Platform'],
        'color': 'secondary',
    },
    {
        'icon': 'up',
        'title': 'Auto Trading Bots',
        'description': 'Automated trading solutions with risk management and real-time monitoring',
        'features': ['Market Analysis', 'Risk Management', 'Real-time Alerts', 'Portfolio Tracking'],
        'color': 'primary',
    },
    {
        'icon': 'globe',
        'title': 'Web Automation & Scraping',
        'description': 'Intelligent web scraping and automation for data collection and processing',
        'features': ['Data Extraction', 'Content Monitoring', 'Price Tracking', 'Report Generation'],
        'color': 'secondary',
    },
    {
        'icon': 'zap',
        'title': 'API Integration Bots',
        'description': 'Seamless integration with third-party APIs and custom workflow automation',
        'features': ['REST API Integration', 'Webhook Handling', 'Data Synchronization', 'Custom Workflows'],
        'color': 'primary',
    },
    {
        'icon': 'cog',
        'title': 'React.js Web Applications',
        'description': 'Modern, responsive web applications built with React.js and Tailwind CSS',
        'features': ['Responsive Design', 'Component Architecture', 'State Management', 'Modern UI/UX'],
        'color': 'secondary',
    },
]

LINK_FIELDS = [
    {'key': 'fiverrUrl', 'attr': 'fiverr_url', 'type': 'text', 'default': DEFAULT_FIVERR_URL},
    {'key': 'telegramUrl', 'attr': 'telegram_url', 'type': 'text', 'default': 'https://t.me/mushfiqmoon'},
    {'key': 'email', 'attr': 'email', 'type': 'text', 'default': 'moonbd01717@gmail.com'},
    {
        'key': 'linkedin',
        'attr': 'linkedin',
        'type': 'text',
        'default': 'https://www.linkedin.com/in/md-moshfiqur-rahman-951039232/',
    },
    {'key': 'facebook', 'attr': 'facebook', 'type': 'text', 'default': 'https://www.facebook.com/mushfiqr.moon'},
]

SKILL_FIELDS = [
    {'key': 'name', 'attr': 'name', 'type': 'text', 'default': '', 'required': True},
    {'key': 'level', 'attr': 'level', 'type': 'percent', 'default': 0},
    {'key': 'icon', 'attr': 'icon', 'type': 'icon', 'default': 'bot'},
    {'key': 'color', 'attr': 'color', 'type': 'choice', 'choices': ('text-primary', 'text-secondary'), 'default': None},
]

SERVICE_FIELDS = [
    {'key': 'title', 'attr': 'title', 'type': 'text', 'default': '', 'required': True},
    {'key': 'description', 'attr': 'description', 'type': 'text', 'default': ''},
    {'key': 'features', 'attr': 'features', 'type': 'lines', 'default': []},
    {'key': 'icon', 'attr': 'icon', 'type': 'icon', 'default': 'bot'},
    {'key': 'color', 'attr': 'color', 'type': 'choice', 'choices': ('primary', 'secondary'), 'default': None},
]

SECTION_SCHEMAS = {
    'settings': {
        'label': 'Site Settings',
        'fields': [
            {'key': 'brandName', 'attr': 'brand_name', 'type': 'text', 'default': DEFAULT_BRAND_NAME},
            {'key': 'logoUrl', 'attr': 'logo_url', 'type': 'text', 'default': ''},
            {'key': 'links', 'attr': 'links', 'type': 'object', 'fields': LINK_FIELDS},
        ],
    },
    'hero': {
        'label': 'Hero',
        'fields': [
            {'key': 'headline', 'attr': 'headline', 'type': 'text', 'default': 'I Build Bots That'},
            {
                'key': 'subheadline',
                'attr': 'subheadline',
                'type': 'text',
                'default': 'Telegram, Discord, Web Automation & More |',
            },
            {'key': 'highlight', 'attr': 'highlight', 'type': 'text', 'default': 'Automate Success'},
            {
                'key': 'stats',
                'attr': 'stats',
                'type': 'object',
                'fields': [
                    {'key': 'years', 'attr': 'years', 'type': 'text', 'default': '2+'},
                    {'key': 'projects', 'attr': 'projects', 'type': 'text', 'default': '30+'},
                    {'key': 'rating', 'attr': 'rating', 'type': 'text', 'default': '5⭐'},
                ],
            },
            {
                'key': 'ctas',
                'attr': 'ctas',
                'type': 'object',
                'fields': [
                    {'key': 'fiverrUrl', 'attr': 'fiverr_url', 'type': 'text', 'default': None},
                ],
            },
        ],
    },
    'about': {
        'label': 'About',
        'fields': [
            {'key': 'copy', 'attr': 'body', 'type': 'text', 'default': None},
            {'key': 'aboutCopy', 'attr': 'about_copy', 'type': 'text', 'default': None},
            {'key': 'skills', 'attr': 'skills', 'type': 'list', 'fields': SKILL_FIELDS, 'default': DEFAULT_SKILLS},
        ],
    },
    'services': {
        'label': 'Services',
        'fields': [
            {'key': 'items', 'attr': 'entries', 'type': 'list', 'fields': SERVICE_FIELDS, 'default': DEFAULT_SERVICES},
        ],
    },
}

SECTION_HEADINGS = {
    'about': ('About Md Moshfiqur Rahaman', ''),
    'services': (
        'My Services',
        'Comprehensive bot development and automation solutions tailored to your business needs',
    ),
    'portfolio': (
        'Featured Projects',
        'Showcasing successful bot development projects that have delivered real value to clients',
    ),
    'reviews': (
        'Client Reviews',
        'Share your experience with our services. Only customers with completed orders can submit reviews.',
    ),
    'contact': (
        "Let's Work Together",
        'Ready to automate your business processes? Get in touch for a free consultation and project quote.',
    ),
    'order': (
        'Place Your Order',
        'Choose your preferred way to order your custom bot or automation system',
    ),
}

NAV_ITEMS = [
    ('Home', 'home'),
    ('About', 'about'),
    ('Services', 'services'),
    ('Portfolio', 'portfolio'),
    ('Reviews', 'reviews'),
    ('Contact', 'contact'),
]


def _coerce_text(value, default):
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _coerce_percent(value, default):
    if isinstance(value, bool):
        return default
    if isinstance(value, str):
        try:
            value = float(value.strip().rstrip('%'))
        except ValueError:
            return default
    if not isinstance(value, (int, float)):
        return default
    return max(0, min(100, int(round(value))))


def _coerce_lines(value, default):
    if isinstance(value, str):
        value = value.splitlines()
    if not isinstance(value, list):
        return list(default)
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _resolve_list(field, value):
    items = []
    if isinstance(value, list):
        for raw_item in value:
            if not isinstance(raw_item, dict):
                continue
            item = resolve_fields(field['fields'], raw_item)
            if any(sub.get('required') and not item[sub['attr']] for sub in field['fields']):
                continue
            items.append(item)
    if not items:
        items = [resolve_fields(field['fields'], raw_item) for raw_item in field.get('default', [])]
    return items


def _resolve_field(field, value):
    kind = field['type']
    if kind == 'object':
        return resolve_fields(field['fields'], value)
    if kind == 'list':
        return _resolve_list(field, value)
    if kind == 'percent':
        return _coerce_percent(value, field['default'])
    if kind == 'lines':
        return _coerce_lines(value, field['default'])
    if kind == 'icon':
        candidate = _coerce_text(value, field['default']).lower()
        return candidate if candidate in ICON_GLYPHS else field['default']
    if kind == 'choice':
        candidate = _coerce_text(value, None)
        return candidate if candidate in field['choices'] else field['default']
    return _coerce_text(value, field['default'])


def resolve_fields(fields, raw):
    """Resolve ``raw`` metadata against a field list; never raises."""
    if not isinstance(raw, dict):
        raw = {}
    return {field['attr']: _resolve_field(field, raw.get(field['key'])) for field in fields}


def _alternate_colors(items, palette):
    for index, item in enumerate(items):
        if not item.get('color'):
            item['color'] = palette[index % len(palette)]
        item['glyph'] = ICON_GLYPHS.get(item.get('icon'), LOGO_FALLBACK_GLYPH)
    return items


def resolve_settings(metadata, brand_default=DEFAULT_BRAND_NAME):
    fields = copy.deepcopy(SECTION_SCHEMAS['settings']['fields'])
    fields[0]['default'] = brand_default
    view = resolve_fields(fields, metadata)
    view['logo_fallback'] = LOGO_FALLBACK_GLYPH
    return view


def resolve_footer_settings(metadata):
    return resolve_settings(metadata, brand_default=DEFAULT_FOOTER_BRAND_NAME)


def resolve_hero(metadata, settings=None):
    view = resolve_fields(SECTION_SCHEMAS['hero']['fields'], metadata)
    settings = settings if settings is not None else resolve_settings(None)
    view['fiverr_url'] = (
        view['ctas']['fiverr_url']
        or _coerce_text(settings['links'].get('fiverr_url'), None)
        or DEFAULT_FIVERR_URL
    )
    view['brand_name'] = settings['brand_name']
    view['logo_url'] = settings['logo_url']
    view['logo_fallback'] = LOGO_FALLBACK_GLYPH
    return view


def resolve_about(metadata):
    view = resolve_fields(SECTION_SCHEMAS['about']['fields'], metadata)
    about_copy = view.pop('about_copy')
    view['body'] = view['body'] or about_copy or DEFAULT_ABOUT_COPY
    _alternate_colors(view['skills'], ('text-primary', 'text-secondary'))
    return view


def resolve_services(metadata):
    view = resolve_fields(SECTION_SCHEMAS['services']['fields'], metadata)
    _alternate_colors(view['entries'], ('primary', 'secondary'))
    return view


SECTION_VIEWS = {
    'settings': resolve_settings,
    'hero': resolve_hero,
    'about': resolve_about,
    'services': resolve_services,
}


def find_active_section(kind, sections):
    for section in sections or ():
        if section.get('section_type') == kind and section.get('is_active'):
            return section
    return None


def section_metadata(kind, sections):
    section = find_active_section(kind, sections)
    if section is None:
        return None
    return section.get('metadata')


def resolve_section(kind, sections):
    if kind not in SECTION_VIEWS:
        raise KeyError(f'No view registered for section type {kind!r}')
    if kind == 'hero':
        return resolve_hero(section_metadata('hero', sections), resolve_settings(section_metadata('settings', sections)))
    return SECTION_VIEWS[kind](section_metadata(kind, sections))


def section_heading(kind, sections):
    title, subtitle = SECTION_HEADINGS.get(kind, ('', ''))
    section = find_active_section(kind, sections) or {}
    return {
        'title': _coerce_text(section.get('title'), title),
        'subtitle': _coerce_text(section.get('subtitle'), subtitle),
        'content': section.get('content') or '',
        'image_url': _coerce_text(section.get('image_url'), ''),
    }


def build_page_context(sections):
    """Build every public view-model from the active content sections."""
    settings_meta = section_metadata('settings', sections)
    nav = resolve_settings(settings_meta)
    footer = resolve_footer_settings(settings_meta)
    return {
        'nav': nav,
        'nav_items': NAV_ITEMS,
        'footer': footer,
        'hero': resolve_hero(section_metadata('hero', sections), nav),
        'about': resolve_about(section_metadata('about', sections)),
        'services': resolve_services(section_metadata('services', sections)),
        'headings': {kind: section_heading(kind, sections) for kind in SECTION_HEADINGS},
    }
