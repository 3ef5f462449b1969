# dugsi/admin.py

from django.contrib import admin

from .models import (
    Teacher,
    TeacherProgram,
    TeacherAssignment,
    DugsiClass,
    DugsiClassTeacher,
    DugsiClassEnrollment,
    AttendanceSession,
    AttendanceRecord,
    TeacherCheckIn,
)


class TeacherProgramInline(admin.TabularInline):
    model = TeacherProgram
    extra = 0


class ClassTeacherInline(admin.TabularInline):
    model = DugsiClassTeacher
    extra = 0


class AttendanceRecordInline(admin.TabularInline):
    model = AttendanceRecord
    extra = 0
    fields = ['profile', 'status', 'lesson_completed', 'surah_name', 'ayat_from', 'ayat_to']


@admin.register(Teacher)
class TeacherAdmin(admin.ModelAdmin):
    list_display = ['person', 'created_at']
    search_fields = ['person__name']
    inlines = [TeacherProgramInline]


@admin.register(TeacherAssignment)
class TeacherAssignmentAdmin(admin.ModelAdmin):
    list_display = ['teacher', 'profile', 'shift', 'is_active', 'start_date', 'end_date']
    list_filter = ['shift', 'is_active']


@admin.register(DugsiClass)
class DugsiClassAdmin(admin.ModelAdmin):
    list_display = ['name', 'shift', 'is_active']
    list_filter = ['shift', 'is_active']
    search_fields = ['name']
    inlines = [ClassTeacherInline]


@admin.register(DugsiClassEnrollment)
class DugsiClassEnrollmentAdmin(admin.ModelAdmin):
    list_display = ['profile', 'dugsi_class', 'is_active', 'start_date', 'end_date']
    list_filter = ['dugsi_class', 'is_active']
    search_fields = ['profile__person__name']


@admin.register(AttendanceSession)
class AttendanceSessionAdmin(admin.ModelAdmin):
    list_display = ['dugsi_class', 'date', 'teacher', 'is_closed']
    list_filter = ['dugsi_class', 'is_closed']
    date_hierarchy = 'date'
    inlines = [AttendanceRecordInline]


@admin.register(TeacherCheckIn)
class TeacherCheckInAdmin(admin.ModelAdmin):
    list_display = ['teacher', 'date', 'shift', 'clock_in_time', 'clock_out_time', 'is_late', 'clock_in_valid']
    list_filter = ['shift', 'is_late', 'clock_in_valid']
    date_hierarchy = 'date'
    search_fields = ['teacher__person__name']
