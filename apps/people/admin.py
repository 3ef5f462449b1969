# people/admin.py

from django.contrib import admin

from .models import Person, ContactPoint, GuardianRelationship, SiblingRelationship


class ContactPointInline(admin.TabularInline):
    model = ContactPoint
    extra = 0
    fields = ['contact_type', 'value', 'is_primary', 'verification_status', 'is_active']


@admin.register(Person)
class PersonAdmin(admin.ModelAdmin):
    list_display = ['name', 'date_of_birth', 'created_at']
    search_fields = ['name', 'contact_points__value']
    inlines = [ContactPointInline]


@admin.register(GuardianRelationship)
class GuardianRelationshipAdmin(admin.ModelAdmin):
    list_display = ['guardian', 'dependent', 'role', 'is_primary_payer', 'is_active']
    list_filter = ['role', 'is_primary_payer', 'is_active']
    search_fields = ['guardian__name', 'dependent__name']


@admin.register(SiblingRelationship)
class SiblingRelationshipAdmin(admin.ModelAdmin):
    list_display = ['person1', 'person2', 'detection_method', 'confidence', 'is_active']
    list_filter = ['detection_method', 'is_active']
