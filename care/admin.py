"""
Django admin registrations for the care models.

Lets superusers inspect grants, messages and notifications at
``/admin/``.  Only minimal configuration is applied.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import (
    AuditEvent,
    ChatGroup,
    ChatGroupMember,
    Message,
    Notification,
    PatientAccess,
    PatientProfile,
    TreatmentSession,
    User,
)


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ('username', 'user_type', 'role', 'is_online', 'last_seen_at', 'is_staff')
    list_filter = ('user_type', 'role', 'is_online')
    search_fields = ('username', 'first_name', 'last_name', 'email')
    fieldsets = BaseUserAdmin.fieldsets + (
        ('Clinic', {'fields': ('user_type', 'role', 'phone', 'is_online', 'last_seen_at')}),
    )


@admin.register(PatientProfile)
class PatientProfileAdmin(admin.ModelAdmin):
    list_display = ('user', 'date_of_birth', 'is_in_treatment', 'updated_at')
    list_filter = ('is_in_treatment',)
    search_fields = ('user__username', 'user__first_name', 'user__last_name')


@admin.register(PatientAccess)
class PatientAccessAdmin(admin.ModelAdmin):
    list_display = ('patient', 'operator', 'can_view', 'can_edit', 'updated_at')
    list_filter = ('can_view', 'can_edit')
    search_fields = ('patient__username', 'operator__username')


class ChatGroupMemberInline(admin.TabularInline):
    model = ChatGroupMember
    extra = 0


@admin.register(ChatGroup)
class ChatGroupAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'is_active', 'created_by', 'created_at')
    search_fields = ('name',)
    inlines = [ChatGroupMemberInline]


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    list_display = ('id', 'sender', 'patient', 'operator', 'group', 'is_read', 'created_at')
    list_filter = ('is_read',)
    search_fields = ('content',)


@admin.register(TreatmentSession)
class TreatmentSessionAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'operator', 'scheduled_at', 'status')
    list_filter = ('status',)


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ('id', 'recipient', 'type', 'title', 'is_read', 'sent_at')
    list_filter = ('type', 'is_read')


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('action', 'user', 'object_type', 'object_id', 'created_at')
    list_filter = ('action', 'object_type')
    search_fields = ('object_id',)
