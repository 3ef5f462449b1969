# managers.py

from django.db import models
from threading import local
import logging

logger = logging.getLogger(__name__)

_thread_locals = local()

PROGRAM_CHOICES = [
    ('MAHAD_PROGRAM', 'Mahad'),
    ('DUGSI_PROGRAM', 'Dugsi'),
    ('YOUTH_EVENTS', 'Youth Events'),
    ('GENERAL_DONATION', 'General Donation'),
]

PROGRAMS = [value for value, _ in PROGRAM_CHOICES]

# Stripe account backing each program
ACCOUNT_TYPE_BY_PROGRAM = {
    'MAHAD_PROGRAM': 'MAHAD',
    'DUGSI_PROGRAM': 'DUGSI',
    'YOUTH_EVENTS': 'YOUTH_EVENTS',
    'GENERAL_DONATION': 'GENERAL_DONATION',
}


def get_current_program():
    """Get the current program for this thread"""
    return getattr(_thread_locals, 'current_program', None)


def set_current_program(program):
    """Set the current program for this thread"""
    if not program:
        return False

    if program not in PROGRAMS:
        logger.warning(f"Program '{program}' is not a known program")
        return False

    _thread_locals.current_program = program
    logger.debug(f"Set current_program to: {program}")
    return True


def clear_current_program():
    """Clear the current program setting"""
    if hasattr(_thread_locals, 'current_program'):
        delattr(_thread_locals, 'current_program')


def get_current_account_type():
    """Stripe account type for the current program, or None"""
    return ACCOUNT_TYPE_BY_PROGRAM.get(get_current_program())


class ProgramContext:
    """Context manager for temporarily switching programs"""

    def __init__(self, program):
        self.program = program
        self.previous_program = None

    def __enter__(self):
        self.previous_program = get_current_program()
        set_current_program(self.program)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.previous_program:
            set_current_program(self.previous_program)
        else:
            clear_current_program()


class ProgramScopedManager(models.Manager):
    """
    Manager that can narrow querysets to the current program.

    program_field is the lookup path to the program value on the model,
    e.g. 'program' on ProgramProfile or 'profile__program' on Enrollment.
    When account_type is True the lookup holds a Stripe account type
    (MAHAD, DUGSI) instead of a program value.
    """

    def __init__(self, program_field='program', account_type=False):
        super().__init__()
        self.program_field = program_field
        self.account_type = account_type

    def for_program(self, program):
        value = ACCOUNT_TYPE_BY_PROGRAM.get(program) if self.account_type else program
        return self.get_queryset().filter(**{self.program_field: value})

    def for_current_program(self):
        program = get_current_program()

        if not program:
            return self.get_queryset()

        return self.for_program(program)


# ==============================================================================
# UTILITY FUNCTIONS
# ==============================================================================

def with_program(program):
    """
    Decorator to execute a function within a specific program context.

    Example:
        @with_program('DUGSI_PROGRAM')
        def sync_dugsi_subscriptions():
            ...
    """
    def decorator(func):
        def wrapper(*args, **kwargs):
            with ProgramContext(program):
                return func(*args, **kwargs)
        return wrapper
    return decorator


def execute_for_all_programs(func, *args, programs=None, **kwargs):
    """
    Execute a function once per billing program.

    Example:
        def count_active():
            return ProgramProfile.objects.for_current_program().count()

        results = execute_for_all_programs(count_active)
        # Returns: {'MAHAD_PROGRAM': 150, 'DUGSI_PROGRAM': 200}
    """
    results = {}

    for program in programs or ['MAHAD_PROGRAM', 'DUGSI_PROGRAM']:
        try:
            with ProgramContext(program):
                results[program] = func(*args, **kwargs)
        except Exception as e:
            logger.error(f"Error running for program '{program}': {e}")
            results[program] = None

    return results
