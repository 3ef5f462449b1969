# students/admin.py

from django.contrib import admin

from .models import Batch, ProgramProfile, Enrollment


class EnrollmentInline(admin.TabularInline):
    model = Enrollment
    extra = 0
    fields = ['batch', 'status', 'start_date', 'end_date', 'reason']


@admin.register(Batch)
class BatchAdmin(admin.ModelAdmin):
    list_display = ['name', 'start_date', 'end_date', 'active_enrollment_count']
    search_fields = ['name']


@admin.register(ProgramProfile)
class ProgramProfileAdmin(admin.ModelAdmin):
    list_display = ['person', 'program', 'status', 'billing_type', 'family_reference_id']
    list_filter = ['program', 'status', 'billing_type', 'graduation_status']
    search_fields = ['person__name', 'family_reference_id']
    inlines = [EnrollmentInline]


@admin.register(Enrollment)
class EnrollmentAdmin(admin.ModelAdmin):
    list_display = ['profile', 'batch', 'status', 'start_date', 'end_date']
    list_filter = ['status', 'profile__program', 'batch']
    search_fields = ['profile__person__name']
