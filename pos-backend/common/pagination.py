# common/pagination.py
"""
Page/limit pagination in the shape the POS frontend consumes:

    {"data": [...], "pagination": {"page", "limit", "total", "totalPages", "hasNext", "hasPrev"}}
"""
from common.exceptions import ValidationError

DEFAULT_LIMIT = 10
MAX_LIMIT = 100


def _positive_int(raw, name: str, default: int) -> int:
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError({name: ["A valid integer is required."]})
    if value < 1:
        raise ValidationError({name: ["Must be greater than or equal to 1."]})
    return value


def page_params(request, default_limit: int = DEFAULT_LIMIT) -> tuple[int, int]:
    params = request.query_params
    page = _positive_int(params.get("page"), "page", 1)
    # `page_size` is accepted for parity with the other list endpoints
    limit = _positive_int(params.get("limit") or params.get("page_size"), "limit", default_limit)
    return page, min(limit, MAX_LIMIT)


def build_page(rows, page: int, limit: int, total: int) -> dict:
    total_pages = (total + limit - 1) // limit
    return {
        "data": rows,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
            "hasNext": page < total_pages,
            "hasPrev": page > 1,
        },
    }


def paginate(request, qs, serializer_class, default_limit: int = DEFAULT_LIMIT) -> dict:
    page, limit = page_params(request, default_limit)
    total = qs.count()
    start = (page - 1) * limit
    rows = qs[start:start + limit]
    data = serializer_class(rows, many=True, context={"request": request}).data
    return build_page(data, page, limit, total)
