# dugsi/views.py

"""
Dugsi Views

- Dashboard, families (registration wizard, detail, edits, payment link)
- Dugsi parent contacts as a vCard file
- Child withdrawal / re-enrollment and family billing pause/resume
- Classes, teachers and class seats
- Attendance sessions, the marking grid, PDF sheet and Excel export
- Teacher check-in: staff dashboard, manual check-in, late report, PDF
- JSON clock-in / clock-out endpoints used from teachers' phones

Business logic lives in services.py; figures come from stats.py.
"""

from django.shortcuts import render, redirect, get_object_or_404
from django.contrib.auth.decorators import login_required
from django.contrib import messages
from django.core.exceptions import ValidationError
from django.http import HttpResponse, JsonResponse, Http404
from django.urls import reverse
from django.utils import timezone
from django.views.decorators.http import require_POST, require_GET
from django.db import transaction
from formtools.wizard.views import SessionWizardView
from io import BytesIO
import json
import logging

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.enums import TA_CENTER

from .models import (
    DugsiClass,
    DugsiClassEnrollment,
    AttendanceSession,
    AttendanceRecord,
    Teacher,
    TeacherCheckIn,
)
from .forms import (
    FAMILY_WIZARD_FORMS,
    FAMILY_WIZARD_STEP_NAMES,
    build_family_registration_data,
    FamilyFilterForm,
    CheckoutLinkForm,
    WithdrawForm,
    ReEnrollForm,
    ChildForm,
    ParentInfoForm,
    SecondParentForm,
    ChildInfoForm,
    DugsiClassForm,
    ClassTeacherForm,
    ClassStudentsForm,
    TeacherForm,
    AttendanceSessionForm,
    AttendanceReportForm,
    parse_attendance_post,
    AdminCheckInForm,
    LateReportForm,
)
from .services import (
    ClassService,
    TeacherService,
    AttendanceService,
    TeacherCheckInService,
    WithdrawalService,
    FamilyService,
)
from . import stats as dugsi_stats

from billing.services import CheckoutService
from billing.tuition import calculate_dugsi_rate, format_dugsi_rate_display, get_rate_tier_description
from core.utils import get_center_today, parse_date
from people.services import PersonService
from people.utils import format_phone_display
from people.vcard import export_dugsi_parent_contacts
from students.models import ProgramProfile
from students.services import RegistrationService
from students.stats import get_program_statistics, get_family_statistics
from utils.utils import validation_error_payload

logger = logging.getLogger(__name__)


def _error_message(error):
    return validation_error_payload(error)['error']


def _json_error(error, status=400):
    return JsonResponse(validation_error_payload(error), status=status)


def _excel_response(wb, filename):
    response = HttpResponse(
        content_type='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
    )
    response['Content-Disposition'] = f'attachment; filename="{filename}_{timezone.now().strftime("%Y%m%d")}.xlsx"'
    wb.save(response)
    return response


def _style_header(ws):
    for cell in ws[1]:
        cell.fill = PatternFill(start_color='4472C4', end_color='4472C4', fill_type='solid')
        cell.font = Font(bold=True, color='FFFFFF')


def _pdf_table(data):
    table = Table(data, repeatRows=1)
    table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#4472C4')),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
        ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, 0), 11),
        ('BOTTOMPADDING', (0, 0), (-1, 0), 10),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.black),
    ]))
    return table


def _pdf_response(title, subtitle, data, filename):
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=landscape(A4))

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        'DugsiTitle',
        parent=styles['Heading1'],
        fontSize=20,
        spaceAfter=12,
        alignment=TA_CENTER
    )

    elements = [
        Paragraph(title, title_style),
        Paragraph(subtitle, styles['Normal']),
        Spacer(1, 16),
        _pdf_table(data),
    ]
    doc.build(elements)

    buffer.seek(0)
    response = HttpResponse(buffer, content_type='application/pdf')
    response['Content-Disposition'] = f'attachment; filename="{filename}.pdf"'
    return response


# =============================================================================
# DASHBOARD
# =============================================================================

@login_required
def dugsi_dashboard(request):
    try:
        program_statistics = get_program_statistics('DUGSI_PROGRAM')
        family_statistics = get_family_statistics()
        class_statistics = dugsi_stats.get_class_statistics()
        checkin_statistics = dugsi_stats.get_checkin_statistics()
    except Exception as e:
        logger.error(f"Error getting Dugsi dashboard statistics: {e}")
        program_statistics = family_statistics = class_statistics = checkin_statistics = {}

    return render(request, 'dugsi/dashboard.html', {
        'program_statistics': program_statistics,
        'family_statistics': family_statistics,
        'class_statistics': class_statistics,
        'checkin_statistics': checkin_statistics,
        'payment_status': request.GET.get('payment'),
    })


# =============================================================================
# FAMILIES
# =============================================================================

@login_required
def family_list(request):
    return render(request, 'dugsi/family_list.html', {
        'filter_form': FamilyFilterForm(search_url=reverse('dugsi:family_search')),
    })


class FamilyRegistrationWizard(SessionWizardView):
    """
    Dugsi family registration.

    Steps:
    1. Parents - parent 1 (required), parent 2 (optional), primary payer
    2. Children - one to ten children
    3. Review - confirm and save
    """

    form_list = FAMILY_WIZARD_FORMS
    template_name = 'dugsi/family_wizard.html'

    def get_template_names(self):
        return [self.template_name]

    def get_context_data(self, form, **kwargs):
        context = super().get_context_data(form=form, **kwargs)

        context['step_names'] = FAMILY_WIZARD_STEP_NAMES
        context['current_step_name'] = FAMILY_WIZARD_STEP_NAMES.get(self.steps.current, 'Step')

        if self.steps.current == 'review':
            parents = self.get_cleaned_data_for_step('parents') or {}
            children = [c for c in (self.get_cleaned_data_for_step('children') or []) if c]
            context['parents_data'] = parents
            context['children_data'] = children
            context['rate_display'] = format_dugsi_rate_display(
                calculate_dugsi_rate(len(children))
            )
            context['tier_description'] = get_rate_tier_description(len(children))

        return context

    def done(self, form_list, **kwargs):
        data = build_family_registration_data(
            self.get_cleaned_data_for_step('parents'),
            self.get_cleaned_data_for_step('children'),
        )

        try:
            result = RegistrationService.create_family_registration(data)
        except ValidationError as e:
            messages.error(self.request, _error_message(e))
            return redirect('dugsi:family_register')

        messages.success(
            self.request,
            f"Registered {len(result['profiles'])} child(ren) for {result['payer'].name}"
        )
        return redirect('dugsi:family_detail', family_id=result['family_reference_id'])


family_register = login_required(FamilyRegistrationWizard.as_view())


@login_required
def family_detail(request, family_id):
    try:
        family = FamilyService.get_family(family_id)
    except ValidationError:
        raise Http404("Family not found")

    subscription = family['subscription']
    parent_links = FamilyService.get_parent_links(_family_child_or_404(family_id).person)
    parent_forms = [
        (link.guardian, ParentInfoForm(initial={
            'parent_number': number,
            'first_name': link.guardian.first_name,
            'last_name': ' '.join(link.guardian.name.split()[1:]),
            'phone': format_phone_display(link.guardian.phone),
        }))
        for number, link in enumerate(parent_links[:2], start=1)
    ]

    return render(request, 'dugsi/family_detail.html', {
        'family': family,
        'parent_forms': parent_forms,
        'second_parent_form': SecondParentForm() if len(parent_links) < 2 else None,
        'subscription': subscription,
        'rate_display': format_dugsi_rate_display(family['calculated_rate']),
        'tier_description': get_rate_tier_description(len(family['active_profiles'])),
        'checkout_form': CheckoutLinkForm(),
        'withdraw_form': WithdrawForm(initial={'billing_adjustment': 'cancel_subscription'}),
    })


@login_required
@require_POST
def family_checkout_link(request, family_id):
    """Create a Stripe payment link and optionally send it on WhatsApp"""
    form = CheckoutLinkForm(request.POST)
    if not form.is_valid():
        messages.error(request, "Invalid payment link options")
        return redirect('dugsi:family_detail', family_id=family_id)

    billing_day = form.cleaned_data.get('billing_day')
    billing_start_date = None
    if billing_day:
        from billing.billing_dates import get_next_billing_date
        billing_start_date = get_next_billing_date(int(billing_day)).date()

    try:
        session = CheckoutService.create_dugsi_checkout_session(
            family_id,
            override_amount=form.cleaned_data.get('override_amount'),
            billing_start_date=billing_start_date,
        )
    except ValidationError as e:
        messages.error(request, _error_message(e))
        return redirect('dugsi:family_detail', family_id=family_id)

    if request.POST.get('send_whatsapp'):
        from notifications.services import WhatsAppService

        family = FamilyService.get_family(family_id)
        payer = family['payer']
        result = WhatsAppService.send_payment_link(
            phone=payer.phone if payer else None,
            parent_name=payer.name if payer else '',
            amount_cents=session['final_rate'],
            child_count=session['child_count'],
            payment_url=session['url'],
            family_id=str(family_id),
            person=payer,
        )
        if result['success']:
            messages.success(request, "Payment link sent on WhatsApp")
        else:
            messages.warning(request, f"WhatsApp not sent: {result['error']}")

    request.session['dugsi_payment_link'] = session['url']
    messages.success(request, f"Payment link created ({session['rate_description']})")
    return redirect('dugsi:family_detail', family_id=family_id)


@login_required
@require_POST
def family_withdraw_all(request, family_id):
    form = WithdrawForm(request.POST)
    if not form.is_valid():
        messages.error(request, "Please choose a reason and billing option")
        return redirect('dugsi:family_detail', family_id=family_id)

    try:
        result = WithdrawalService.withdraw_all_children(
            family_id,
            form.cleaned_data['reason'],
            form.cleaned_data.get('reason_note') or '',
            form.get_billing_adjustment()
        )
    except ValidationError as e:
        messages.error(request, _error_message(e))
        return redirect('dugsi:family_detail', family_id=family_id)

    messages.success(request, f"Withdrew {result['withdrawn_count']} child(ren)")
    if result['billing_error']:
        messages.warning(request, f"Billing was not fully updated: {result['billing_error']}")

    return redirect('dugsi:family_detail', family_id=family_id)


@login_required
@require_POST
def family_pause_billing(request, family_id):
    try:
        WithdrawalService.pause_family_billing(family_id)
        messages.success(request, "Billing paused")
    except ValidationError as e:
        messages.error(request, _error_message(e))
    except Exception as e:
        logger.error(f"Failed to pause billing for family {family_id}: {e}", exc_info=True)
        messages.error(request, "Stripe could not pause the subscription")

    return redirect('dugsi:family_detail', family_id=family_id)


@login_required
@require_POST
def family_resume_billing(request, family_id):
    try:
        WithdrawalService.resume_family_billing(family_id)
        messages.success(request, "Billing resumed")
    except ValidationError as e:
        messages.error(request, _error_message(e))
    except Exception as e:
        logger.error(f"Failed to resume billing for family {family_id}: {e}", exc_info=True)
        messages.error(request, "Stripe could not resume the subscription")

    return redirect('dugsi:family_detail', family_id=family_id)


def _family_child_or_404(family_id):
    """Any child of the family; parent links are shared by all siblings"""
    profile = ProgramProfile.objects.filter(
        program='DUGSI_PROGRAM', family_reference_id=family_id
    ).order_by('created_at').first()
    if not profile:
        raise Http404("Family not found")
    return profile


@login_required
@require_POST
def family_update_parent(request, family_id):
    profile = _family_child_or_404(family_id)
    form = ParentInfoForm(request.POST)
    if not form.is_valid():
        messages.error(request, "Please enter the parent's name and a valid phone")
        return redirect('dugsi:family_detail', family_id=family_id)

    try:
        parent = FamilyService.update_parent_info(profile.pk, **form.cleaned_data)
    except ValidationError as e:
        messages.error(request, _error_message(e))
    else:
        messages.success(request, f"Updated {parent.name}")

    return redirect('dugsi:family_detail', family_id=family_id)


@login_required
@require_POST
def family_add_parent(request, family_id):
    profile = _family_child_or_404(family_id)
    form = SecondParentForm(request.POST)
    if not form.is_valid():
        messages.error(request, "Second parent needs a name, email and phone")
        return redirect('dugsi:family_detail', family_id=family_id)

    try:
        parent = FamilyService.add_second_parent(profile.pk, **form.cleaned_data)
    except ValidationError as e:
        messages.error(request, _error_message(e))
    else:
        messages.success(request, f"Added {parent.name} as second parent")

    return redirect('dugsi:family_detail', family_id=family_id)


@login_required
def family_add_child(request, family_id):
    sibling = _family_child_or_404(family_id)

    if request.method == 'POST':
        form = ChildForm(request.POST)
        if form.is_valid():
            try:
                profile = FamilyService.add_child_to_family(sibling.pk, **form.cleaned_data)
            except ValidationError as e:
                messages.error(request, _error_message(e))
            else:
                messages.success(request, f"{profile.person.name} was added to the family")
                return redirect('dugsi:family_detail', family_id=family_id)
    else:
        form = ChildForm(initial={'last_name': sibling.person.last_name})

    return render(request, 'dugsi/form.html', {'form': form, 'title': 'Add Child to Family'})


@login_required
def export_parent_contacts_vcard(request):
    export = export_dugsi_parent_contacts()
    if not export['exported']:
        messages.warning(request, "No parent contacts to export")
        return redirect('dugsi:family_list')

    response = HttpResponse(export['content'], content_type='text/vcard; charset=utf-8')
    response['Content-Disposition'] = f'attachment; filename="{export["filename"]}"'
    return response


# =============================================================================
# CHILDREN
# =============================================================================

@login_required
def child_detail(request, pk):
    profile = get_object_or_404(
        ProgramProfile.objects.select_related('person'),
        pk=pk,
        program='DUGSI_PROGRAM'
    )
    seat = DugsiClassEnrollment.objects.select_related('dugsi_class').filter(
        profile=profile, is_active=True
    ).first()

    return render(request, 'dugsi/child_detail.html', {
        'profile': profile,
        'seat': seat,
        'attendance': dugsi_stats.get_student_attendance_summary(profile),
        'recent_records': profile.attendance_records.select_related(
            'session__dugsi_class'
        ).order_by('-session__date')[:10],
        'teacher_assignments': profile.teacher_assignments.filter(is_active=True).select_related('teacher__person'),
        'withdraw_form': WithdrawForm(),
        're_enroll_form': ReEnrollForm(),
    })


@login_required
def child_withdraw(request, pk):
    """GET shows the billing preview, POST withdraws"""
    profile = get_object_or_404(ProgramProfile, pk=pk, program='DUGSI_PROGRAM')

    if request.method == 'POST':
        form = WithdrawForm(request.POST)
        if form.is_valid():
            try:
                result = WithdrawalService.withdraw_child(
                    profile.pk,
                    form.cleaned_data['reason'],
                    form.cleaned_data.get('reason_note') or '',
                    form.get_billing_adjustment()
                )
            except ValidationError as e:
                messages.error(request, _error_message(e))
            else:
                messages.success(request, f"{profile.person.name} was withdrawn")
                if result['billing_error']:
                    messages.warning(request, f"Billing was not updated: {result['billing_error']}")
                return redirect('dugsi:child_detail', pk=profile.pk)
    else:
        form = WithdrawForm()

    try:
        preview = WithdrawalService.get_withdraw_preview(profile.pk)
    except ValidationError as e:
        messages.error(request, _error_message(e))
        return redirect('dugsi:child_detail', pk=profile.pk)

    return render(request, 'dugsi/withdraw.html', {
        'profile': profile,
        'form': form,
        'preview': preview,
    })


@login_required
@require_POST
def child_re_enroll(request, pk):
    form = ReEnrollForm(request.POST)
    if not form.is_valid():
        messages.error(request, "Please choose a billing option")
        return redirect('dugsi:child_detail', pk=pk)

    try:
        result = WithdrawalService.re_enroll_child(pk, form.get_billing_adjustment())
    except ValidationError as e:
        messages.error(request, _error_message(e))
        return redirect('dugsi:child_detail', pk=pk)

    messages.success(request, "Child re-enrolled")
    if result['billing_error']:
        messages.warning(request, f"Billing was not updated: {result['billing_error']}")
    return redirect('dugsi:child_detail', pk=pk)


@login_required
def child_edit(request, pk):
    profile = get_object_or_404(
        ProgramProfile.objects.select_related('person'),
        pk=pk,
        program='DUGSI_PROGRAM'
    )

    if request.method == 'POST':
        form = ChildInfoForm(request.POST, initial=ChildInfoForm.for_profile(profile).initial)
        if form.is_valid():
            try:
                FamilyService.update_child_info(profile.pk, **form.get_changes())
            except ValidationError as e:
                messages.error(request, _error_message(e))
            else:
                messages.success(request, "Child information updated")
                return redirect('dugsi:child_detail', pk=profile.pk)
    else:
        form = ChildInfoForm.for_profile(profile)

    return render(request, 'dugsi/form.html', {'form': form, 'title': f"Edit {profile.person.name}"})


# =============================================================================
# CLASSES
# =============================================================================

@login_required
def class_list(request):
    return render(request, 'dugsi/class_list.html', {
        'class_statistics': dugsi_stats.get_class_statistics(),
        'form': DugsiClassForm(),
    })


@login_required
def class_create(request):
    if request.method == 'POST':
        form = DugsiClassForm(request.POST)
        if form.is_valid():
            try:
                dugsi_class = ClassService.create_class(
                    form.cleaned_data['name'],
                    form.cleaned_data['shift'],
                    form.cleaned_data.get('description') or ''
                )
            except ValidationError as e:
                messages.error(request, _error_message(e))
            else:
                messages.success(request, f"Class {dugsi_class.name} was created")
                return redirect('dugsi:class_detail', pk=dugsi_class.pk)
    else:
        form = DugsiClassForm()

    return render(request, 'dugsi/form.html', {'form': form, 'title': 'New Class'})


@login_required
def class_edit(request, pk):
    dugsi_class = get_object_or_404(DugsiClass, pk=pk)

    if request.method == 'POST':
        form = DugsiClassForm(request.POST, instance=DugsiClass.objects.get(pk=pk))
        if form.is_valid():
            try:
                ClassService.update_class(pk, **form.cleaned_data)
            except ValidationError as e:
                messages.error(request, _error_message(e))
            else:
                messages.success(request, "Class updated")
                return redirect('dugsi:class_detail', pk=pk)
    else:
        form = DugsiClassForm(instance=dugsi_class)

    return render(request, 'dugsi/form.html', {'form': form, 'title': 'Update Class'})


@login_required
@require_POST
def class_delete(request, pk):
    try:
        ClassService.delete_class(pk)
        messages.success(request, "Class deleted")
    except ValidationError as e:
        messages.error(request, _error_message(e))
        return redirect('dugsi:class_detail', pk=pk)
    return redirect('dugsi:class_list')


@login_required
def class_detail(request, pk):
    dugsi_class = get_object_or_404(DugsiClass, pk=pk)

    unassigned = ClassService.get_unassigned_students()
    students_form = ClassStudentsForm(
        choices=[(str(row['profile'].pk), row['name']) for row in unassigned]
    )

    return render(request, 'dugsi/class_detail.html', {
        'dugsi_class': dugsi_class,
        'teachers': dugsi_class.teachers.filter(is_active=True).select_related('teacher__person'),
        'seats': dugsi_class.enrollments.filter(is_active=True).select_related('profile__person'),
        'sessions': dugsi_class.sessions.all()[:10],
        'teacher_form': ClassTeacherForm(),
        'students_form': students_form,
        'unassigned': unassigned,
    })


@login_required
@require_POST
def class_assign_teacher(request, pk):
    form = ClassTeacherForm(request.POST)
    if form.is_valid():
        try:
            ClassService.assign_teacher(pk, form.cleaned_data['teacher'].pk)
            messages.success(request, f"{form.cleaned_data['teacher'].name} now teaches this class")
        except ValidationError as e:
            messages.error(request, _error_message(e))
    else:
        messages.error(request, "Select a teacher")
    return redirect('dugsi:class_detail', pk=pk)


@login_required
@require_POST
def class_remove_teacher(request, pk, teacher_id):
    if ClassService.remove_teacher(pk, teacher_id):
        messages.success(request, "Teacher removed from class")
    else:
        messages.warning(request, "Teacher was not assigned to this class")
    return redirect('dugsi:class_detail', pk=pk)


@login_required
@require_POST
def class_assign_students(request, pk):
    profile_ids = request.POST.getlist('profile_ids')
    if not profile_ids:
        messages.error(request, "Select at least one student")
        return redirect('dugsi:class_detail', pk=pk)

    result = ClassService.bulk_enroll_students(pk, profile_ids)
    messages.success(request, f"Added {result['enrolled']} student(s) to the class")
    for failure in result['failed']:
        messages.error(request, failure['error'])
    return redirect('dugsi:class_detail', pk=pk)


@login_required
@require_POST
def class_remove_student(request, enrollment_id):
    try:
        enrollment = ClassService.remove_student_from_class(enrollment_id)
    except ValidationError as e:
        messages.error(request, _error_message(e))
        return redirect('dugsi:class_list')

    messages.success(request, "Student removed from class")
    return redirect('dugsi:class_detail', pk=enrollment.dugsi_class_id)


# =============================================================================
# TEACHERS
# =============================================================================

@login_required
def teacher_list(request):
    teachers = Teacher.objects.filter(
        programs__program='DUGSI_PROGRAM'
    ).select_related('person').prefetch_related('programs', 'class_assignments__dugsi_class')

    return render(request, 'dugsi/teacher_list.html', {'teachers': teachers})


@login_required
def teacher_create(request):
    if request.method == 'POST':
        form = TeacherForm(request.POST)
        if form.is_valid():
            data = form.cleaned_data
            try:
                with transaction.atomic():
                    person, _ = PersonService.find_or_create_person(
                        name=data['name'],
                        email=data.get('email') or None,
                        phone=data.get('phone') or None,
                    )
                    teacher, _ = TeacherService.create_teacher(person, 'DUGSI_PROGRAM', data['shifts'])
            except ValidationError as e:
                messages.error(request, _error_message(e))
            else:
                messages.success(request, f"{teacher.name} added as a Dugsi teacher")
                return redirect('dugsi:teacher_list')
    else:
        form = TeacherForm()

    return render(request, 'dugsi/form.html', {'form': form, 'title': 'New Teacher'})


# =============================================================================
# ATTENDANCE
# =============================================================================

@login_required
def session_list(request):
    sessions = AttendanceSession.objects.select_related('dugsi_class', 'teacher__person')

    class_id = request.GET.get('class')
    if class_id:
        sessions = sessions.filter(dugsi_class_id=class_id)

    return render(request, 'dugsi/session_list.html', {
        'sessions': sessions[:50],
        'form': AttendanceSessionForm(initial={'date': get_center_today()}),
        'report_form': AttendanceReportForm(),
    })


@login_required
@require_POST
def session_create(request):
    form = AttendanceSessionForm(request.POST)
    if not form.is_valid():
        messages.error(request, "Choose a class and a date")
        return redirect('dugsi:session_list')

    try:
        session = AttendanceService.create_session(
            form.cleaned_data['date'],
            form.cleaned_data['dugsi_class'].pk,
            form.cleaned_data.get('notes') or ''
        )
    except ValidationError as e:
        messages.error(request, _error_message(e))
        return redirect('dugsi:session_list')

    return redirect('dugsi:session_detail', pk=session.pk)


@login_required
def session_detail(request, pk):
    """Attendance grid for a session; POST saves it"""
    session = get_object_or_404(
        AttendanceSession.objects.select_related('dugsi_class', 'teacher__person'),
        pk=pk
    )
    profiles = list(session.dugsi_class.get_active_profiles())

    if request.method == 'POST':
        records = parse_attendance_post(request.POST, profiles)
        try:
            count = AttendanceService.mark_records(session.pk, records)
        except ValidationError as e:
            messages.error(request, _error_message(e))
        else:
            messages.success(request, f"Saved attendance for {count} student(s)")
        return redirect('dugsi:session_detail', pk=session.pk)

    records = {r.profile_id: r for r in session.records.all()}
    rows = [{'profile': profile, 'record': records.get(profile.pk)} for profile in profiles]

    return render(request, 'dugsi/session_detail.html', {
        'session': session,
        'rows': rows,
        'status_choices': AttendanceRecord.STATUS_CHOICES,
        'is_closed': AttendanceService.is_effectively_closed(session),
    })


@login_required
@require_POST
def session_close(request, pk):
    try:
        AttendanceService.close_session(pk)
        messages.success(request, "Session closed")
    except ValidationError as e:
        messages.error(request, _error_message(e))
    return redirect('dugsi:session_detail', pk=pk)


@login_required
@require_POST
def session_delete(request, pk):
    try:
        AttendanceService.delete_session(pk)
        messages.success(request, "Session deleted")
    except ValidationError as e:
        messages.error(request, _error_message(e))
    return redirect('dugsi:session_list')


@login_required
def session_pdf(request, pk):
    """Printable attendance sheet"""
    session = get_object_or_404(
        AttendanceSession.objects.select_related('dugsi_class', 'teacher__person'),
        pk=pk
    )
    records = {r.profile_id: r for r in session.records.all()}

    data = [['Student', 'Status', 'Surah', 'Ayat', 'Lesson', 'Notes']]
    for profile in session.dugsi_class.get_active_profiles():
        record = records.get(profile.pk)
        if record:
            ayat = f"{record.ayat_from or ''}-{record.ayat_to or ''}" if record.ayat_from else ''
            data.append([
                profile.person.name[:30],
                record.get_status_display(),
                record.surah_name[:20],
                ayat,
                'Yes' if record.lesson_completed else 'No',
                record.notes[:40],
            ])
        else:
            data.append([profile.person.name[:30], '', '', '', '', ''])

    return _pdf_response(
        f"{session.dugsi_class.name} Attendance",
        f"{session.date.strftime('%A, %B %d, %Y')} | Teacher: {session.teacher.name}",
        data,
        f"attendance_{session.dugsi_class.name.replace(' ', '_')}_{session.date.isoformat()}",
    )


@login_required
def export_attendance_excel(request):
    form = AttendanceReportForm(request.GET)
    records = AttendanceRecord.objects.select_related(
        'session__dugsi_class', 'profile__person'
    ).order_by('-session__date', 'session__dugsi_class__name', 'profile__person__name')

    if form.is_valid():
        if form.cleaned_data.get('dugsi_class'):
            records = records.filter(session__dugsi_class=form.cleaned_data['dugsi_class'])
        if form.cleaned_data.get('date_from'):
            records = records.filter(session__date__gte=form.cleaned_data['date_from'])
        if form.cleaned_data.get('date_to'):
            records = records.filter(session__date__lte=form.cleaned_data['date_to'])

    wb = Workbook()
    ws = wb.active
    ws.title = "Attendance"
    ws.append(['Date', 'Class', 'Student', 'Status', 'Lesson Completed', 'Surah', 'From', 'To', 'Notes'])
    _style_header(ws)

    for record in records:
        ws.append([
            record.session.date.strftime('%Y-%m-%d'),
            record.session.dugsi_class.name,
            record.profile.person.name,
            record.get_status_display(),
            'Yes' if record.lesson_completed else 'No',
            record.surah_name,
            record.ayat_from or '',
            record.ayat_to or '',
            record.notes,
        ])

    return _excel_response(wb, 'dugsi_attendance')


# =============================================================================
# TEACHER CHECK-IN (STAFF)
# =============================================================================

@login_required
def checkin_dashboard(request):
    day = parse_date(request.GET.get('date')) or get_center_today()

    return render(request, 'dugsi/checkin_dashboard.html', {
        'day': day,
        'rows': TeacherCheckInService.get_today_status(day),
        'statistics': dugsi_stats.get_checkin_statistics(day),
        'admin_form': AdminCheckInForm(),
    })


@login_required
@require_POST
def admin_checkin(request):
    form = AdminCheckInForm(request.POST)
    if not form.is_valid():
        messages.error(request, "A teacher, shift and reason are required")
        return redirect('dugsi:checkin_dashboard')

    try:
        TeacherCheckInService.admin_clock_in(
            form.cleaned_data['teacher'].pk,
            form.cleaned_data['shift'],
            form.cleaned_data['reason']
        )
        messages.success(request, f"{form.cleaned_data['teacher'].name} checked in")
    except ValidationError as e:
        messages.error(request, _error_message(e))

    return redirect('dugsi:checkin_dashboard')


@login_required
@require_POST
def admin_checkout(request, pk):
    try:
        TeacherCheckInService.clock_out(pk)
        messages.success(request, "Teacher clocked out")
    except ValidationError as e:
        messages.error(request, _error_message(e))
    return redirect('dugsi:checkin_dashboard')


@login_required
def late_report(request):
    form = LateReportForm(request.GET or None)
    checkins = TeacherCheckIn.objects.none()

    if form.is_valid():
        checkins = TeacherCheckInService.get_late_report(
            form.cleaned_data['date_from'],
            form.cleaned_data['date_to'],
            shift=form.cleaned_data.get('shift') or None
        )

    return render(request, 'dugsi/late_report.html', {'form': form, 'checkins': checkins})


@login_required
def checkin_report_pdf(request):
    today = get_center_today()
    date_from = parse_date(request.GET.get('date_from')) or today.replace(day=1)
    date_to = parse_date(request.GET.get('date_to')) or today

    checkins = TeacherCheckIn.objects.filter(
        date__gte=date_from, date__lte=date_to
    ).select_related('teacher__person').order_by('date', 'shift', 'teacher__person__name')

    data = [['Date', 'Teacher', 'Shift', 'Clock In', 'Clock Out', 'Late', 'Location', 'Notes']]
    for checkin in checkins:
        data.append([
            checkin.date.strftime('%Y-%m-%d'),
            checkin.teacher.name[:30],
            checkin.get_shift_display(),
            timezone.localtime(checkin.clock_in_time).strftime('%I:%M %p'),
            timezone.localtime(checkin.clock_out_time).strftime('%I:%M %p') if checkin.clock_out_time else '',
            'Yes' if checkin.is_late else 'No',
            'Valid' if checkin.clock_in_valid else 'Outside',
            checkin.notes[:40],
        ])

    return _pdf_response(
        "Teacher Check-in Report",
        f"{date_from.isoformat()} to {date_to.isoformat()}",
        data,
        f"teacher_checkins_{date_from.isoformat()}_{date_to.isoformat()}",
    )


# =============================================================================
# TEACHER CHECK-IN (JSON)
# =============================================================================

def _json_body(request):
    try:
        return json.loads(request.body or b'{}')
    except ValueError:
        return None


def _checkin_payload(checkin):
    return {
        'id': str(checkin.id),
        'teacher_id': str(checkin.teacher_id),
        'date': checkin.date.isoformat(),
        'shift': checkin.shift,
        'clock_in_time': checkin.clock_in_time.isoformat(),
        'clock_in_valid': checkin.clock_in_valid,
        'is_late': checkin.is_late,
        'clock_out_time': checkin.clock_out_time.isoformat() if checkin.clock_out_time else None,
    }


@login_required
@require_GET
def api_checkin_status(request, teacher_id):
    """Today's check-ins and each shift's window for a teacher"""
    teacher = get_object_or_404(Teacher, pk=teacher_id)
    checkins = TeacherCheckIn.objects.filter(teacher=teacher, date=get_center_today())

    windows = {}
    for shift in teacher.get_shifts('DUGSI_PROGRAM'):
        window = TeacherCheckInService.get_checkin_window_status(shift)
        windows[shift] = {'can_check_in': window['can_check_in'], 'reason': window['reason']}

    return JsonResponse({
        'teacher': teacher.name,
        'checkins': [_checkin_payload(c) for c in checkins],
        'windows': windows,
    })


@login_required
@require_POST
def api_clock_in(request):
    data = _json_body(request)
    if data is None:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    missing = [key for key in ('teacher_id', 'shift', 'latitude', 'longitude') if data.get(key) in (None, '')]
    if missing:
        return JsonResponse({'error': f"Missing required fields: {', '.join(missing)}"}, status=400)

    try:
        lat = float(data['latitude'])
        lng = float(data['longitude'])
    except (TypeError, ValueError):
        return JsonResponse({'error': 'Invalid coordinates'}, status=400)

    try:
        checkin = TeacherCheckInService.clock_in(data['teacher_id'], data['shift'], lat, lng)
    except ValidationError as e:
        status = 404 if e.code == 'TEACHER_NOT_FOUND' else 400
        return _json_error(e, status=status)

    return JsonResponse({'success': True, 'checkin': _checkin_payload(checkin)}, status=201)


@login_required
@require_POST
def api_clock_out(request, checkin_id):
    data = _json_body(request)
    if data is None:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    try:
        lat = float(data['latitude']) if data.get('latitude') not in (None, '') else None
        lng = float(data['longitude']) if data.get('longitude') not in (None, '') else None
    except (TypeError, ValueError):
        return JsonResponse({'error': 'Invalid coordinates'}, status=400)

    try:
        checkin = TeacherCheckInService.clock_out(checkin_id, lat, lng)
    except ValidationError as e:
        status = 404 if e.code == 'CHECKIN_NOT_FOUND' else 400
        return _json_error(e, status=status)

    return JsonResponse({'success': True, 'checkin': _checkin_payload(checkin)})
