"""
Database models for the clinic care backend.

Operators and patients share a single :class:`User` table; a patient
additionally owns exactly one :class:`PatientProfile` whose primary key
is the user id.  Operators reach a patient's records through explicit
:class:`PatientAccess` grants.  Messages, treatment sessions and
notifications hang off these identities.
"""
from __future__ import annotations

from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q


class User(AbstractUser):
    """Unified identity for operators and patients.

    ``role`` is the operator's privilege level ('admin' is the top
    administrative role).  ``user_type`` distinguishes clinic staff
    ('operator') from patients.  ``is_online`` and ``last_seen_at`` are
    maintained by the real-time presence layer.
    """
    ROLE_ADMIN = 'admin'
    ROLE_SUPPORT = 'support'
    ROLE_BASIC = 'basic'
    ROLE_CHOICES = [
        (ROLE_ADMIN, 'Administrator'),
        (ROLE_SUPPORT, 'Support'),
        (ROLE_BASIC, 'Basic'),
    ]

    TYPE_OPERATOR = 'operator'
    TYPE_PATIENT = 'patient'
    TYPE_CHOICES = [
        (TYPE_OPERATOR, 'Operator'),
        (TYPE_PATIENT, 'Patient'),
    ]

    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default=ROLE_BASIC)
    user_type = models.CharField(max_length=10, choices=TYPE_CHOICES, default=TYPE_OPERATOR, db_index=True)
    phone = models.CharField(max_length=32, blank=True)
    is_online = models.BooleanField(default=False)
    last_seen_at = models.DateTimeField(null=True, blank=True)

    def __str__(self) -> str:
        return f"{self.username} ({self.user_type}/{self.role})"

    @property
    def is_patient(self) -> bool:
        return self.user_type == self.TYPE_PATIENT

    @property
    def display_name(self) -> str:
        return self.get_full_name() or self.username

    @property
    def actor(self):
        from care.access import Actor
        return Actor(id=self.id, role=self.role, user_type=self.user_type)


class PatientProfile(models.Model):
    """Medical record extension of a patient user.

    The primary key is the patient's user id, so ``PatientProfile.pk``
    and ``User.id`` are interchangeable for patients.
    """
    user = models.OneToOneField(
        User, on_delete=models.CASCADE, primary_key=True, related_name='patient_profile'
    )
    date_of_birth = models.DateField(null=True, blank=True)
    is_in_treatment = models.BooleanField(default=True)
    medical_history = models.TextField(blank=True)
    allergies = models.TextField(blank=True)
    medications = models.TextField(blank=True)
    previous_treatments = models.TextField(blank=True)
    notes = models.TextField(blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"profile of {self.user_id}"

    def clean(self):
        if self.user.user_type != User.TYPE_PATIENT:
            raise ValidationError('patient profile requires a user of type patient')

    def save(self, *args, **kwargs):
        self.clean()
        super().save(*args, **kwargs)


class PatientAccess(models.Model):
    """Grant authorising an operator to view and/or edit one patient."""
    patient = models.ForeignKey(User, on_delete=models.CASCADE, related_name='accesses_as_patient')
    operator = models.ForeignKey(User, on_delete=models.CASCADE, related_name='accesses_as_operator')
    can_view = models.BooleanField(default=True)
    can_edit = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['patient', 'operator'], name='uniq_patient_operator_access'),
        ]
        indexes = [models.Index(fields=['operator', 'can_view'], name='care_patien_operato_3f1c2a_idx')]

    def __str__(self) -> str:
        flags = ('view' if self.can_view else '-') + '/' + ('edit' if self.can_edit else '-')
        return f"access p={self.patient_id} o={self.operator_id} {flags}"


class ChatGroup(models.Model):
    """A named group conversation between several users."""
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    created_by = models.ForeignKey(User, null=True, on_delete=models.SET_NULL, related_name='chat_groups_created')
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.name} (#{self.id})"


class ChatGroupMember(models.Model):
    ROLE_ADMIN = 'admin'
    ROLE_MODERATOR = 'moderator'
    ROLE_MEMBER = 'member'
    ROLE_CHOICES = [
        (ROLE_ADMIN, 'Admin'),
        (ROLE_MODERATOR, 'Moderator'),
        (ROLE_MEMBER, 'Member'),
    ]
    group = models.ForeignKey(ChatGroup, on_delete=models.CASCADE, related_name='members')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='chat_memberships')
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default=ROLE_MEMBER)
    joined_at = models.DateTimeField(auto_now_add=True)
    left_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['group', 'user'], name='uniq_chat_group_member'),
        ]

    def __str__(self) -> str:
        return f"{self.user_id} in {self.group_id} as {self.role}"


class Message(models.Model):
    """A chat message scoped to exactly one patient thread or one group.

    Patient-thread messages may carry ``operator`` to pin them to the 1:1
    conversation between the patient and that operator.
    """
    patient = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.CASCADE, related_name='patient_messages'
    )
    operator = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='operator_messages'
    )
    group = models.ForeignKey(
        ChatGroup, null=True, blank=True, on_delete=models.CASCADE, related_name='messages'
    )
    sender = models.ForeignKey(User, on_delete=models.CASCADE, related_name='sent_messages')
    content = models.TextField(blank=True, default='')
    mentions = models.JSONField(default=list, blank=True)
    reply_to = models.ForeignKey('self', null=True, blank=True, on_delete=models.SET_NULL, related_name='replies')
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=(
                    (Q(patient__isnull=False) & Q(group__isnull=True))
                    | (Q(patient__isnull=True) & Q(group__isnull=False))
                ),
                name='message_has_single_scope',
            ),
        ]
        indexes = [
            models.Index(fields=['patient', 'created_at'], name='care_messag_patient_8d0e4b_idx'),
            models.Index(fields=['group', 'created_at'], name='care_messag_group_i_5a7c91_idx'),
        ]

    def __str__(self) -> str:
        scope = f"g={self.group_id}" if self.group_id else f"p={self.patient_id}"
        return f"msg {self.id} {scope}"


class TreatmentSession(models.Model):
    STATUS_SCHEDULED = 'scheduled'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = [
        (STATUS_SCHEDULED, 'Scheduled'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]
    patient = models.ForeignKey(User, on_delete=models.CASCADE, related_name='treatment_sessions')
    operator = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='operated_sessions'
    )
    scheduled_at = models.DateTimeField()
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_SCHEDULED, db_index=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [models.Index(fields=['patient', 'scheduled_at'], name='care_treatm_patient_b62d07_idx')]

    def __str__(self) -> str:
        return f"session {self.id} p={self.patient_id} {self.status}"


class Notification(models.Model):
    """Durable per-user notification, independent of delivery channel."""
    recipient = models.ForeignKey(User, on_delete=models.CASCADE, related_name='notifications')
    title = models.CharField(max_length=255)
    message = models.TextField()
    type = models.CharField(max_length=64)
    data = models.JSONField(default=dict, blank=True)
    is_read = models.BooleanField(default=False, db_index=True)
    sent_at = models.DateTimeField(auto_now_add=True, db_index=True)
    read_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [models.Index(fields=['recipient', 'is_read'], name='care_notifi_recipie_4e9a13_idx')]

    def __str__(self) -> str:
        return f"notification {self.id} -> {self.recipient_id} ({self.type})"


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.CharField(max_length=64, blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at'], name='care_audite_action_0b8f52_idx'),
            models.Index(fields=['object_type', 'object_id', 'created_at'], name='care_audite_object__c3d7e6_idx'),
        ]

    def __str__(self):
        return f"{self.action}:{self.user_id}@{self.created_at:%F %T}"
