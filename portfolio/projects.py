"""Projects joined with their approved-review statistics."""
import logging
from decimal import ROUND_HALF_UP, Decimal

from .backend import BackendError

logger = logging.getLogger(__name__)

PROJECTS_TABLE = 'projects'
REVIEWS_TABLE = 'reviews'


def average_rating(ratings):
    """Mean of ``ratings`` rounded half-up to one decimal; 0 when empty.

    Ratings are accumulated as integers scaled by ten so the result does not
    depend on float summation order.
    """
    ratings = [int(rating) for rating in ratings if rating is not None]
    if not ratings:
        return 0
    scaled_total = sum(rating * 10 for rating in ratings)
    mean = Decimal(scaled_total) / Decimal(len(ratings)) / Decimal(10)
    return float(mean.quantize(Decimal('0.1'), rounding=ROUND_HALF_UP))


def review_summary(reviews):
    approved = [review for review in reviews if review.get('is_approved')]
    ratings = [review.get('rating') for review in approved]
    return {
        'count': len(approved),
        'average_rating': average_rating(ratings),
        'five_star_count': sum(1 for rating in ratings if rating == 5),
    }


def attach_review_stats(projects, reviews):
    by_project = {}
    for review in reviews:
        if not review.get('is_approved'):
            continue
        by_project.setdefault(review.get('project_id'), []).append(review)

    enriched = []
    for project in projects:
        summary = review_summary(by_project.get(project.get('id'), []))
        enriched.append({
            **project,
            'review_count': summary['count'],
            'five_star_count': summary['five_star_count'],
            'average_rating': summary['average_rating'],
        })
    return enriched


def fetch_projects_with_reviews(backend):
    projects = backend.select(PROJECTS_TABLE, order_by='sort_order', ascending=True)
    reviews = backend.select(REVIEWS_TABLE, is_approved=True)
    return attach_review_stats(projects, reviews)


def fetch_approved_reviews(backend):
    return backend.select(REVIEWS_TABLE, order_by='created_at', ascending=False, is_approved=True)


class ProjectAggregator:
    """Project list refreshed on demand; a failed refresh keeps the last list."""

    def __init__(self, backend):
        self.backend = backend
        self.projects = []
        self.error = None
        self.is_loading = False

    def refresh(self):
        self.is_loading = True
        try:
            projects = fetch_projects_with_reviews(self.backend)
        except BackendError as exc:
            logger.warning('Projects fetch failed: %s', exc)
            self.error = str(exc) or 'Failed to load projects.'
            return False
        finally:
            self.is_loading = False
        self.projects = projects
        self.error = None
        return True
