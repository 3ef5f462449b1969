# utils/middleware.py

import logging
from utils.context import set_request_context, clear_request_context, get_client_ip

logger = logging.getLogger(__name__)


class AuditContextMiddleware:
    """
    Captures user, IP and program for audit logging. Must run after
    AuthenticationMiddleware and ProgramContextMiddleware.
    """

    # Requests that come from Stripe/Meta rather than a staff member
    AUTOMATED_PATH_PREFIXES = ('/billing/webhooks/', '/billing/cron/', '/notifications/webhooks/')

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        user = getattr(request, 'user', None)

        set_request_context(
            user=user if user is not None and user.is_authenticated else None,
            ip_address=get_client_ip(request),
            user_agent=request.META.get('HTTP_USER_AGENT', ''),
            request_path=request.path,
            program=getattr(request, 'program', None),
            is_automated=request.path.startswith(self.AUTOMATED_PATH_PREFIXES),
        )

        try:
            response = self.get_response(request)
        finally:
            clear_request_context()

        return response
