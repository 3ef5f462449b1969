# utils/utils.py

from django.core.paginator import Paginator, EmptyPage, PageNotAnInteger

# =============================================================================
# CORE UTILITY HELPER FUNCTIONS
# =============================================================================

def paginate_queryset(request, queryset, per_page=20):
    paginator = Paginator(queryset, per_page)
    page = request.GET.get('page', 1)
    try:
        page_obj = paginator.page(page)
    except PageNotAnInteger:
        page_obj = paginator.page(1)
    except EmptyPage:
        page_obj = paginator.page(paginator.num_pages)
    return page_obj, paginator


def parse_filters(request, filter_keys):
    """
    Extract filter values from request.GET.
    filter_keys: list of filter names to extract
    Returns dict: {key: value or None}
    """
    filters = {}
    for key in filter_keys:
        value = request.GET.get(key, '').strip()
        filters[key] = value if value else None
    return filters


def parse_bool(value):
    """'true'/'1'/'yes' -> True, 'false'/'0'/'no' -> False, anything else None"""
    if value is None:
        return None
    value = str(value).strip().lower()
    if value in ('true', '1', 'yes', 'on'):
        return True
    if value in ('false', '0', 'no', 'off'):
        return False
    return None


def validation_error_payload(error):
    """
    Flatten a django ValidationError into a JSON-friendly dict with the
    first message, its code and params.
    """
    detail = error.error_list[0] if hasattr(error, 'error_list') and error.error_list else error
    message = detail.message
    params = getattr(detail, 'params', None) or {}
    if params and '%(' in str(message):
        message = message % params
    return {
        'error': str(message),
        'code': getattr(detail, 'code', None),
        'details': {k: str(v) for k, v in params.items()},
    }
