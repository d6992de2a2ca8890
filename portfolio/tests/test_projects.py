from portfolio.backend import BackendError
from portfolio.projects import ProjectAggregator, attach_review_stats, average_rating, review_summary


def test_average_rating_rounds_half_up():
    assert average_rating([5, 5, 4]) == 4.7
    assert average_rating([4, 4, 4, 5]) == 4.3
    assert average_rating([1, 2]) == 1.5
    assert average_rating([]) == 0


def test_unapproved_reviews_are_not_counted():
    projects = [{'id': 1, 'title': 'Shop Bot'}, {'id': 2, 'title': 'Scraper'}]
    reviews = [
        {'project_id': 1, 'rating': 5, 'is_approved': True},
        {'project_id': 1, 'rating': 4, 'is_approved': True},
        {'project_id': 1, 'rating': 5, 'is_approved': False},
        {'project_id': None, 'rating': 1, 'is_approved': True},
    ]
    enriched = attach_review_stats(projects, reviews)
    assert enriched[0]['review_count'] == 2
    assert enriched[0]['average_rating'] == 4.5
    assert enriched[0]['five_star_count'] == 1
    assert enriched[1]['review_count'] == 0
    assert enriched[1]['average_rating'] == 0
    assert enriched[0]['title'] == 'Shop Bot'


def test_review_summary():
    summary = review_summary([
        {'rating': 5, 'is_approved': True},
        {'rating': 3, 'is_approved': True},
        {'rating': 5, 'is_approved': False},
    ])
    assert summary == {'count': 2, 'average_rating': 4.0, 'five_star_count': 1}


class TableBackend:
    def __init__(self, tables):
        self.tables = tables
        self.fail = False

    def select(self, table, order_by=None, ascending=True, **filters):
        if self.fail:
            raise BackendError('down')
        rows = [row for row in self.tables[table] if all(row.get(k) == v for k, v in filters.items())]
        if order_by:
            rows.sort(key=lambda row: row.get(order_by) or 0, reverse=not ascending)
        return rows


def test_aggregator_keeps_last_list_on_failure():
    backend = TableBackend({
        'projects': [{'id': 2, 'title': 'B', 'sort_order': 1}, {'id': 1, 'title': 'A', 'sort_order': 0}],
        'reviews': [{'project_id': 1, 'rating': 3, 'is_approved': True}],
    })
    aggregator = ProjectAggregator(backend)
    assert aggregator.refresh() is True
    assert [project['title'] for project in aggregator.projects] == ['A', 'B']
    assert aggregator.projects[0]['average_rating'] == 3.0

    backend.fail = True
    assert aggregator.refresh() is False
    assert aggregator.error == 'down'
    assert [project['title'] for project in aggregator.projects] == ['A', 'B']
    assert aggregator.is_loading is False
