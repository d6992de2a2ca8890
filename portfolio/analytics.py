"""Visitor analytics record types.

Only the shapes are defined here; nothing in the application collects
sessions yet, so the admin analytics panel renders ``empty_analytics()``.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

DEVICE_TYPES = ('desktop', 'mobile', 'tablet')
CHAT_MESSAGE_TYPES = ('text', 'image', 'file')


@dataclass
class DeviceInfo:
    user_agent: str = ''
    browser: str = ''
    browser_version: str = ''
    os: str = ''
    os_version: str = ''
    device: str = ''
    device_type: str = 'desktop'
    screen_resolution: str = ''
    language: str = ''
    timezone: str = ''
    is_online: bool = True

    def __post_init__(self):
        if self.device_type not in DEVICE_TYPES:
            raise ValueError(f'device_type must be one of {DEVICE_TYPES}, got {self.device_type!r}')


@dataclass
class LocationInfo:
    ip: str = ''
    country: str = ''
    country_code: str = ''
    region: str = ''
    city: str = ''
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    isp: str = ''
    timezone: str = ''
    currency: str = ''


@dataclass
class PageView:
    url: str
    title: str
    timestamp: datetime
    duration: int = 0


@dataclass
class VisitInfo:
    entry_page: str
    current_page: str
    first_visit: datetime
    last_visit: datetime
    visit_count: int = 1
    session_duration: int = 0
    page_views: List[PageView] = field(default_factory=list)
    referrer: str = ''
    search_query: Optional[str] = None


@dataclass
class ChatMessage:
    id: str
    session_id: str
    message: str
    is_from_user: bool
    timestamp: datetime
    message_type: str = 'text'
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if self.message_type not in CHAT_MESSAGE_TYPES:
            raise ValueError(f'message_type must be one of {CHAT_MESSAGE_TYPES}, got {self.message_type!r}')


@dataclass
class UserSession:
    id: str
    session_id: str
    device_info: DeviceInfo
    location_info: LocationInfo
    visit_info: VisitInfo
    created_at: datetime
    last_activity: datetime
    is_active: bool = True
    user_id: Optional[str] = None
    chat_history: List[ChatMessage] = field(default_factory=list)
    referrer: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None


@dataclass
class CountryVisit:
    country: str
    country_code: str
    visits: int = 0
    percentage: float = 0.0


@dataclass
class CityVisit:
    city: str
    region: str
    country: str
    visits: int = 0
    percentage: float = 0.0


@dataclass
class DeviceStats:
    desktop: int = 0
    mobile: int = 0
    tablet: int = 0
    total: int = 0


@dataclass
class PageStats:
    page: str
    visits: int = 0
    unique_visitors: int = 0
    average_time: float = 0.0
    bounce_rate: float = 0.0


@dataclass
class ReferrerStats:
    source: str
    visits: int = 0
    percentage: float = 0.0


@dataclass
class TimeStats:
    hour: int
    visits: int = 0
    percentage: float = 0.0


@dataclass
class AnalyticsData:
    total_visits: int = 0
    unique_visitors: int = 0
    today_visits: int = 0
    weekly_visits: int = 0
    monthly_visits: int = 0
    top_countries: List[CountryVisit] = field(default_factory=list)
    top_cities: List[CityVisit] = field(default_factory=list)
    device_stats: DeviceStats = field(default_factory=DeviceStats)
    page_stats: List[PageStats] = field(default_factory=list)
    referrer_stats: List[ReferrerStats] = field(default_factory=list)
    time_stats: List[TimeStats] = field(default_factory=list)


@dataclass
class SessionFilter:
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    country: Optional[str] = None
    city: Optional[str] = None
    device_type: Optional[str] = None
    is_active: Optional[bool] = None
    has_chat: Optional[bool] = None

    def matches(self, session):
        if self.start is not None and session.created_at < self.start:
            return False
        if self.end is not None and session.created_at > self.end:
            return False
        if self.country and session.location_info.country != self.country:
            return False
        if self.city and session.location_info.city != self.city:
            return False
        if self.device_type and session.device_info.device_type != self.device_type:
            return False
        if self.is_active is not None and session.is_active != self.is_active:
            return False
        if self.has_chat is not None and bool(session.chat_history) != self.has_chat:
            return False
        return True


@dataclass
class RealTimeVisitor:
    session_id: str
    current_page: str
    last_activity: datetime
    device_info: DeviceInfo
    location_info: LocationInfo
    time_on_page: int = 0
    is_typing: bool = False


def empty_analytics():
    return AnalyticsData()


def analytics_to_dict(data):
    return asdict(data)
