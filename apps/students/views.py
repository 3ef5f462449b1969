# students/views.py

"""
Mahad Student Views

- Dashboard and student list (HTMX search in htmx_views.py)
- Registration, billing fields, checkout link
- Enrollment status changes and withdrawal
- Batch (cohort) management and assignment
- Excel and vCard exports

Business logic lives in services.py; figures come from stats.py.
"""

from django.shortcuts import render, redirect, get_object_or_404
from django.contrib.auth.decorators import login_required
from django.contrib import messages
from django.core.exceptions import ValidationError
from django.http import HttpResponse
from django.urls import reverse
from django.utils import timezone
from django.views.decorators.http import require_POST
import logging

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill

from .models import Batch, ProgramProfile, Enrollment
from .forms import (
    StudentFilterForm,
    MahadRegistrationForm,
    BillingFieldsForm,
    BatchForm,
    BatchAssignForm,
    EnrollmentStatusForm,
)
from .services import MahadStudentService, BatchService, EnrollmentService
from . import stats as student_stats

from billing.services import CheckoutService
from billing.tuition import (
    calculate_mahad_rate,
    format_mahad_rate_display,
    format_billing_type,
    format_graduation_status,
)
from people.vcard import export_mahad_contacts
from utils.utils import validation_error_payload

logger = logging.getLogger(__name__)


def _error_message(error):
    return validation_error_payload(error)['error']


# =============================================================================
# DASHBOARD & LIST
# =============================================================================

@login_required
def students_dashboard(request):
    """Mahad overview: status counts, batches, billing types"""
    try:
        program_statistics = student_stats.get_program_statistics('MAHAD_PROGRAM')
        batch_statistics = student_stats.get_batch_statistics()
        billing_type_counts = student_stats.get_billing_type_counts()
    except Exception as e:
        logger.error(f"Error getting dashboard statistics: {e}")
        program_statistics = {}
        batch_statistics = {}
        billing_type_counts = {}

    recent_profiles = ProgramProfile.objects.filter(
        program='MAHAD_PROGRAM'
    ).select_related('person').order_by('-created_at')[:10]

    return render(request, 'students/dashboard.html', {
        'program_statistics': program_statistics,
        'batch_statistics': batch_statistics,
        'billing_type_counts': billing_type_counts,
        'recent_profiles': recent_profiles,
    })


@login_required
def student_list(request):
    """List Mahad students - HTMX loads data on page load"""
    filter_form = StudentFilterForm(search_url=reverse('students:student_search'))

    return render(request, 'students/list.html', {
        'filter_form': filter_form,
    })


@login_required
def student_detail(request, pk):
    profile = get_object_or_404(
        ProgramProfile.objects.select_related('person'),
        pk=pk,
        program='MAHAD_PROGRAM'
    )

    rate = calculate_mahad_rate(profile.graduation_status, profile.payment_frequency, profile.billing_type)

    context = {
        'profile': profile,
        'person': profile.person,
        'enrollments': profile.enrollments.select_related('batch').order_by('-start_date'),
        'active_enrollment': profile.get_active_enrollment(),
        'billing_assignments': profile.billing_assignments.filter(
            is_active=True
        ).select_related('subscription'),
        'payments': profile.payments.all()[:12],
        'rate_display': format_mahad_rate_display(rate, profile.payment_frequency),
        'billing_type_display': format_billing_type(profile.billing_type),
        'graduation_status_display': format_graduation_status(profile.graduation_status),
        'status_form': EnrollmentStatusForm(),
    }
    return render(request, 'students/detail.html', context)


# =============================================================================
# REGISTRATION & BILLING FIELDS
# =============================================================================

@login_required
def student_register(request):
    if request.method == 'POST':
        form = MahadRegistrationForm(request.POST)
        if form.is_valid():
            data = form.cleaned_data
            try:
                profile, _ = MahadStudentService.register_student(
                    name=form.full_name,
                    email=data['email'],
                    phone=data['phone'],
                    date_of_birth=data.get('date_of_birth'),
                    batch=data.get('batch'),
                    graduation_status=data['graduation_status'],
                    payment_frequency=data['payment_frequency'],
                    billing_type=data['billing_type'],
                    **form.profile_fields()
                )
            except ValidationError as e:
                messages.error(request, _error_message(e))
            else:
                messages.success(request, f"{profile.person.name} was registered successfully")
                return redirect('students:student_detail', pk=profile.pk)
        else:
            messages.error(request, "Please correct the errors in the form")
    else:
        form = MahadRegistrationForm()

    return render(request, 'students/form.html', {'form': form, 'title': 'Register Mahad Student'})


@login_required
def student_billing_edit(request, pk):
    profile = get_object_or_404(ProgramProfile, pk=pk, program='MAHAD_PROGRAM')

    if request.method == 'POST':
        form = BillingFieldsForm(request.POST, instance=ProgramProfile.objects.get(pk=pk))
        if form.is_valid():
            changed = MahadStudentService.update_billing_fields(profile, **form.cleaned_data)
            if changed:
                messages.success(request, "Billing details updated")
            return redirect('students:student_detail', pk=profile.pk)
        messages.error(request, "Please correct the errors in the form")
    else:
        form = BillingFieldsForm(instance=profile)

    return render(request, 'students/form.html', {
        'form': form,
        'profile': profile,
        'title': 'Update Billing Details',
    })


@login_required
@require_POST
def student_checkout(request, pk):
    """Start a Stripe checkout for the student and send staff to it"""
    try:
        session = CheckoutService.create_mahad_checkout_session(pk)
    except ValidationError as e:
        messages.error(request, _error_message(e))
        return redirect('students:student_detail', pk=pk)

    return redirect(session['url'])


# =============================================================================
# ENROLLMENT STATUS
# =============================================================================

@login_required
@require_POST
def enrollment_status_update(request, pk):
    enrollment = get_object_or_404(Enrollment.objects.select_related('profile'), pk=pk)
    form = EnrollmentStatusForm(request.POST)

    if form.is_valid():
        EnrollmentService.update_enrollment_status(
            enrollment,
            form.cleaned_data['status'],
            reason=form.cleaned_data.get('reason') or '',
            end_date=form.cleaned_data.get('end_date')
        )
        messages.success(request, f"Enrollment is now {enrollment.get_status_display()}")
    else:
        messages.error(request, "Invalid status change")

    return redirect('students:student_detail', pk=enrollment.profile_id)


@login_required
@require_POST
def student_withdraw(request, pk):
    profile = get_object_or_404(ProgramProfile, pk=pk, program='MAHAD_PROGRAM')
    count = MahadStudentService.withdraw(profile, reason=request.POST.get('reason', ''))

    messages.warning(request, f"{profile.person.name} was withdrawn ({count} enrollment(s) closed)")
    return redirect('students:student_detail', pk=profile.pk)


# =============================================================================
# BATCHES
# =============================================================================

@login_required
def batch_list(request):
    return render(request, 'students/batch_list.html', {
        'batch_statistics': student_stats.get_batch_statistics(),
        'assign_form': BatchAssignForm(),
    })


@login_required
def batch_create(request):
    if request.method == 'POST':
        form = BatchForm(request.POST)
        if form.is_valid():
            try:
                batch = BatchService.create_batch(**form.cleaned_data)
            except ValidationError as e:
                messages.error(request, _error_message(e))
            else:
                messages.success(request, f"Batch {batch.name} was created")
                return redirect('students:batch_list')
    else:
        form = BatchForm()

    return render(request, 'students/form.html', {'form': form, 'title': 'New Batch'})


@login_required
def batch_edit(request, pk):
    batch = get_object_or_404(Batch, pk=pk)

    if request.method == 'POST':
        form = BatchForm(request.POST, instance=Batch.objects.get(pk=pk))
        if form.is_valid():
            try:
                BatchService.update_batch(batch, **form.cleaned_data)
            except ValidationError as e:
                messages.error(request, _error_message(e))
            else:
                messages.success(request, f"Batch {batch.name} was updated")
                return redirect('students:batch_list')
    else:
        form = BatchForm(instance=batch)

    return render(request, 'students/form.html', {'form': form, 'title': 'Update Batch'})


@login_required
@require_POST
def batch_delete(request, pk):
    batch = get_object_or_404(Batch, pk=pk)
    try:
        BatchService.delete_batch(batch)
        messages.success(request, "Batch deleted")
    except ValidationError as e:
        messages.error(request, _error_message(e))
    return redirect('students:batch_list')


@login_required
@require_POST
def batch_assign(request):
    form = BatchAssignForm(request.POST)
    if not form.is_valid():
        messages.error(request, "Select a batch and at least one student")
        return redirect('students:batch_list')

    result = BatchService.assign_students(form.cleaned_data['batch'], form.cleaned_data['profile_ids'])
    messages.success(request, f"Assigned {result['assigned']} student(s)")
    for failure in result['failed']:
        messages.error(request, failure['error'])

    return redirect('students:batch_list')


@login_required
@require_POST
def batch_transfer(request, pk):
    from_batch = get_object_or_404(Batch, pk=pk)
    to_batch = get_object_or_404(Batch, pk=request.POST.get('to_batch'))
    profile_ids = request.POST.getlist('profile_ids') or None

    moved = BatchService.transfer_students(from_batch, to_batch, profile_ids)
    messages.success(request, f"Moved {moved} student(s) to {to_batch.name}")
    return redirect('students:batch_list')


# =============================================================================
# EXPORT FUNCTIONS
# =============================================================================

@login_required
def export_students_excel(request):
    """Export Mahad students with their batch and rate to Excel"""
    profiles = ProgramProfile.objects.filter(
        program='MAHAD_PROGRAM'
    ).select_related('person').prefetch_related('enrollments__batch').order_by('person__name')

    wb = Workbook()
    ws = wb.active
    ws.title = "Mahad Students"

    ws.append([
        'Name', 'Email', 'Phone', 'Status', 'Batch', 'Graduation Status',
        'Payment Frequency', 'Billing Type', 'Rate', 'Registered'
    ])

    for cell in ws[1]:
        cell.fill = PatternFill(start_color='4472C4', end_color='4472C4', fill_type='solid')
        cell.font = Font(bold=True, color='FFFFFF')

    for profile in profiles:
        enrollment = profile.get_active_enrollment()
        rate = calculate_mahad_rate(profile.graduation_status, profile.payment_frequency, profile.billing_type)
        ws.append([
            profile.person.name,
            profile.person.email or '',
            profile.person.phone or '',
            profile.get_status_display(),
            enrollment.batch.name if enrollment and enrollment.batch else '',
            format_graduation_status(profile.graduation_status),
            profile.get_payment_frequency_display(),
            format_billing_type(profile.billing_type),
            format_mahad_rate_display(rate, profile.payment_frequency),
            profile.created_at.strftime('%Y-%m-%d') if profile.created_at else '',
        ])

    response = HttpResponse(
        content_type='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
    )
    response['Content-Disposition'] = (
        f'attachment; filename="mahad_students_{timezone.now().strftime("%Y%m%d")}.xlsx"'
    )

    wb.save(response)
    return response


@login_required
def export_contacts_vcard(request):
    """Phone contacts for all Mahad students, or one batch with ?batch=<id>"""
    batch = None
    if request.GET.get('batch'):
        batch = get_object_or_404(Batch, pk=request.GET['batch'])

    export = export_mahad_contacts(batch)
    if not export['exported']:
        messages.warning(request, f"No contacts to export ({export['skipped']} without phone or email)")
        return redirect('students:student_list')

    response = HttpResponse(export['content'], content_type='text/vcard; charset=utf-8')
    response['Content-Disposition'] = f'attachment; filename="{export["filename"]}"'
    return response
