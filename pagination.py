import math

from flask import current_app

from errors import ValidationError


def _positive_int(args, name, default):
    raw = args.get(name)
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"'{name}' must be a positive integer")
    if value < 1:
        raise ValidationError(f"'{name}' must be a positive integer")
    return value


def parse_pagination(args, default_limit):
    """Read page/limit query parameters, capping limit at MAX_PAGE_SIZE."""
    page = _positive_int(args, 'page', 1)
    limit = min(_positive_int(args, 'limit', default_limit), current_app.config['MAX_PAGE_SIZE'])
    return page, limit


def total_pages(total, limit):
    return math.ceil(total / limit) if limit else 0


def page_offset(page, limit, total):
    """Row offset of a page, or None when the page starts past the last row."""
    offset = (page - 1) * limit
    if offset >= total:
        return None
    return offset



def build_pagination(page, limit, total, total_key):
    return {
        'currentPage': page,
        'totalPages': total_pages(total, limit),
        total_key: total,
        'limit': limit,
    }
