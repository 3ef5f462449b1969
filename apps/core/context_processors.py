# core/context_processors.py

from irshad.managers import PROGRAM_CHOICES, get_current_program


def program_context(request):
    """
    Adds the current program to all templates so navigation and headers
    can switch between Mahad and Dugsi.
    """
    program = getattr(request, 'program', None) or get_current_program()
    return {
        'current_program': program,
        'current_program_label': dict(PROGRAM_CHOICES).get(program, ''),
        'program_choices': PROGRAM_CHOICES,
    }
