DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def normalize_pagination(limit_raw, offset_raw):
    """Clamp list paging to 1..MAX_LIMIT rows starting at a non-negative offset."""
    try:
        limit = DEFAULT_LIMIT if limit_raw in (None, '') else int(limit_raw)
        offset = 0 if offset_raw in (None, '') else int(offset_raw)
    except ValueError:
        raise ValueError('limit and offset must be integers')
    return max(1, min(limit, MAX_LIMIT)), max(0, offset)
