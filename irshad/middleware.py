# irshad/middleware.py

"""
Program context middleware for the Irshad Center administration site.

Mahad and Dugsi run on separate Stripe accounts and keep separate rosters.
This middleware decides which program a request belongs to and exposes it
through the thread-local program context (irshad.managers), so services,
Stripe clients and program-scoped querysets pick the right tenant without
passing the program around explicitly.

Program Selection Logic:
1. System paths (/admin/, /static/, /media/) -> no program
2. ?program=<PROGRAM> override (staff only)
3. URL prefix (/mahad/, /dugsi/, webhook paths) -> that program
4. Program remembered in the session from a previous page
5. Fallback -> no program
"""

import logging

from .managers import (
    PROGRAMS,
    get_current_program,
    set_current_program,
    clear_current_program,
)

logger = logging.getLogger(__name__)


class ProgramContextMiddleware:
    """
    Sets the current program for the lifetime of a request and restores
    the previous value afterwards.
    """

    SYSTEM_PATHS = ['/admin/', '/static/', '/media/', '/__debug__/']

    # Longest prefixes first so webhook paths win over app prefixes
    PROGRAM_PATHS = [
        ('/billing/webhooks/stripe/mahad/', 'MAHAD_PROGRAM'),
        ('/billing/webhooks/stripe/dugsi/', 'DUGSI_PROGRAM'),
        ('/mahad/', 'MAHAD_PROGRAM'),
        ('/dugsi/', 'DUGSI_PROGRAM'),
    ]

    SESSION_KEY = 'current_program'

    def __init__(self, get_response):
        self.get_response = get_response

    # ==========================================================================
    # MAIN REQUEST PROCESSING
    # ==========================================================================

    def __call__(self, request):
        original_program = get_current_program()

        try:
            program = self.determine_program(request)
        except Exception:
            logger.exception("ProgramContextMiddleware failure - continuing without program")
            program = None

        request.program = program

        if program:
            set_current_program(program)
            self.remember_program(request, program)
        else:
            clear_current_program()

        try:
            response = self.get_response(request)
        finally:
            if original_program:
                set_current_program(original_program)
            else:
                clear_current_program()

        return response

    # ==========================================================================
    # PROGRAM DETERMINATION
    # ==========================================================================

    def determine_program(self, request):
        if self.is_system_path(request.path):
            return None

        override = self.get_program_override(request)
        if override:
            return override

        for prefix, program in self.PROGRAM_PATHS:
            if request.path.startswith(prefix):
                return program

        session = getattr(request, 'session', None)
        if session is not None:
            return session.get(self.SESSION_KEY)

        return None

    def is_system_path(self, path):
        return any(path.startswith(p) for p in self.SYSTEM_PATHS)

    def get_program_override(self, request):
        """Staff may switch program with ?program=DUGSI_PROGRAM"""
        program = request.GET.get('program', '').strip().upper()
        if not program:
            return None

        user = getattr(request, 'user', None)
        if not (user and user.is_authenticated and user.is_staff):
            return None

        if program not in PROGRAMS:
            logger.warning(f"Ignoring unknown program override '{program}'")
            return None

        return program

    def remember_program(self, request, program):
        session = getattr(request, 'session', None)
        if session is not None and session.get(self.SESSION_KEY) != program:
            session[self.SESSION_KEY] = program
