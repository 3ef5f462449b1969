# utils/context.py

"""
Thread-local request context for audit logging.

Holds who is acting (user, IP, user agent), on which path, and for which
program, so BaseModel.save() and the billing audit log can record it
without every service taking a request argument. Webhooks and scheduled
jobs use RequestContext to mark their writes as automated.
"""

from threading import local
import logging

from irshad.managers import get_current_program

logger = logging.getLogger(__name__)

_thread_locals = local()


def set_request_context(user=None, ip_address=None, user_agent=None,
                        request_path=None, program=None, is_automated=False,
                        request=None):
    """
    Set the current request context for this thread.

    Called by AuditContextMiddleware at the start of each request.

    Args:
        user: The authenticated user (or None)
        ip_address: Client IP address
        user_agent: Browser user agent string
        request_path: The request path/URL
        program: Program the request belongs to (defaults to the current program)
        is_automated: True for webhooks and scheduled jobs
        request: The full request object (alternative to individual params)
    """
    if request:
        user = getattr(request, 'user', None)
        ip_address = get_client_ip(request)
        user_agent = request.META.get('HTTP_USER_AGENT', '')
        request_path = getattr(request, 'path', '')
        program = program or getattr(request, 'program', None)

    _thread_locals.request_context = {
        'user': user if user is not None and getattr(user, 'is_authenticated', False) else None,
        'ip_address': ip_address,
        'user_agent': user_agent or '',
        'request_path': request_path or '',
        'program': program or get_current_program(),
        'is_automated': is_automated,
    }

    logger.debug(f"Set request context: user={user}, ip={ip_address}, program={program}")


def get_request_context():
    """
    Get the current request context for this thread.

    Returns:
        dict or None: user, ip_address, user_agent, request_path, program,
        is_automated
    """
    return getattr(_thread_locals, 'request_context', None)


def clear_request_context():
    """Clear the request context for this thread."""
    if hasattr(_thread_locals, 'request_context'):
        delattr(_thread_locals, 'request_context')


def get_client_ip(request):
    """
    Extract the client's IP address, honouring X-Forwarded-For from the
    load balancer.
    """
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')


# ============================================================================
# CONTEXT MANAGER
# ============================================================================

class RequestContext:
    """
    Context manager for temporarily setting request context.

    Used by webhook handlers and management commands.

    Example:
        with RequestContext(request_path='cron:auto_clock_out', is_automated=True):
            TeacherCheckInService.auto_clock_out_stale_checkins()
    """

    def __init__(self, user=None, ip_address=None, user_agent=None,
                 request_path=None, program=None, is_automated=False):
        self.context = {
            'user': user,
            'ip_address': ip_address,
            'user_agent': user_agent or '',
            'request_path': request_path or '',
            'program': program,
            'is_automated': is_automated,
        }
        self.previous_context = None

    def __enter__(self):
        self.previous_context = get_request_context()
        if not self.context['program']:
            self.context['program'] = get_current_program()
        _thread_locals.request_context = self.context
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.previous_context:
            _thread_locals.request_context = self.previous_context
        else:
            clear_request_context()
