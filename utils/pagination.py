"""Pagination helpers shared by services and API blueprints"""

from typing import Any, Callable, Dict, Optional, Tuple
from flask import current_app


def resolve_page_args(page: Optional[int] = None, per_page: Optional[int] = None) -> Tuple[int, int]:
    """Clamp page/per_page to the configured defaults and limits."""
    default_size = current_app.config.get('STMS_DEFAULT_PAGE_SIZE', 20)
    max_size = current_app.config.get('STMS_MAX_PAGE_SIZE', 100)

    page = page if page and page > 0 else 1
    per_page = per_page if per_page and per_page > 0 else default_size
    return page, min(per_page, max_size)


def paginate(query, page: Optional[int] = None, per_page: Optional[int] = None):
    """Paginate a Flask-SQLAlchemy query without raising on out-of-range pages."""
    page, per_page = resolve_page_args(page, per_page)
    return query.paginate(page=page, per_page=per_page, error_out=False)


def page_to_dict(pagination, converter: Callable[[Any], Dict[str, Any]]) -> Dict[str, Any]:
    return {
        'items': [converter(item) for item in pagination.items],
        'page': pagination.page,
        'per_page': pagination.per_page,
        'total': pagination.total,
        'pages': pagination.pages
    }
