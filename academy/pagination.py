from typing import Any, Dict, Tuple

from django.core.paginator import EmptyPage, Page, PageNotAnInteger, Paginator


def _positive_int(value, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def paginate(queryset, request, default_limit: int = 20, max_limit: int = 100) -> Tuple[Page, Dict[str, Any]]:
    """
    Slice a queryset using the `page` and `limit` query parameters.

    Returns the page object together with the pagination block the list
    endpoints embed in their responses.
    """
    limit = min(_positive_int(request.query_params.get("limit"), default_limit), max_limit)
    paginator = Paginator(queryset, limit)
    page = request.query_params.get("page", 1)

    try:
        page_obj = paginator.page(page)
    except PageNotAnInteger:
        page_obj = paginator.page(1)
    except EmptyPage:
        page_obj = paginator.page(paginator.num_pages)

    meta = {
        "page": page_obj.number,
        "limit": limit,
        "total": paginator.count,
        "total_pages": paginator.num_pages,
    }
    return page_obj, meta
