import secrets
from typing import Optional

from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Q
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError as DRFValidation

from care.models import PatientProfile
from care.services.grants import granted_patient_ids

User = get_user_model()

# serializer field -> PatientProfile attribute
PROFILE_FIELDS = {
    'dateOfBirth': 'date_of_birth',
    'isInTreatment': 'is_in_treatment',
    'medicalHistory': 'medical_history',
    'allergies': 'allergies',
    'medications': 'medications',
    'previousTreatments': 'previous_treatments',
    'notes': 'notes',
}


def format_patient(profile: PatientProfile, *, detail: bool = False) -> dict:
    user = profile.user
    data = {
        'id': user.id,
        'username': user.username,
        'name': user.display_name,
        'firstName': user.first_name,
        'lastName': user.last_name,
        'email': user.email,
        'phone': user.phone,
        'dateOfBirth': profile.date_of_birth.isoformat() if profile.date_of_birth else None,
        'isInTreatment': profile.is_in_treatment,
        'isOnline': user.is_online,
        'lastSeenAt': user.last_seen_at.isoformat() if user.last_seen_at else None,
    }
    if detail:
        data.update({
            'medicalHistory': profile.medical_history,
            'allergies': profile.allergies,
            'medications': profile.medications,
            'previousTreatments': profile.previous_treatments,
            'notes': profile.notes,
            'updatedAt': profile.updated_at.isoformat() if profile.updated_at else None,
        })
    return data


def get_profile_or_404(patient_id: int) -> PatientProfile:
    profile = PatientProfile.objects.select_related('user').filter(user_id=patient_id).first()
    if not profile:
        raise NotFound('Patient not found')
    return profile


def visible_patients(user, *, q: Optional[str]=None, in_treatment: Optional[bool]=None):
    """Patients the user may list: all for admins, granted ones for
    other operators, only themselves for patients."""
    qs = PatientProfile.objects.select_related('user')
    actor = user.actor
    if actor.is_patient:
        qs = qs.filter(user_id=user.id)
    elif not actor.is_admin:
        qs = qs.filter(user_id__in=granted_patient_ids(user.id))
    if q:
        qs = qs.filter(
            Q(user__first_name__icontains=q) | Q(user__last_name__icontains=q)
            | Q(user__username__icontains=q) | Q(user__email__icontains=q)
        )
    if in_treatment is not None:
        qs = qs.filter(is_in_treatment=in_treatment)
    return qs.order_by('user__last_name', 'user__first_name', 'user_id')


def create_patient(*, first_name, last_name='', email='', phone='', date_of_birth=None, password=None):
    if password:
        try:
            validate_password(password)
        except ValidationError as e:
            raise DRFValidation({'password': e.messages})
    else:
        password = secrets.token_urlsafe(12)

    with transaction.atomic():
        username = f"patient{int(timezone.now().timestamp())}{secrets.randbelow(1000):03d}"
        user = User.objects.create_user(
            username=username, password=password, first_name=first_name, last_name=last_name,
            email=email or '', phone=phone or '', user_type=User.TYPE_PATIENT, role=User.ROLE_BASIC,
        )
        profile = PatientProfile.objects.create(user=user, date_of_birth=date_of_birth)

    # initial password is returned once so the admin can hand it over
    return user, profile, password


def update_patient(profile: PatientProfile, values: dict) -> list[str]:
    changed = []
    if 'phone' in values:
        profile.user.phone = values['phone']
        profile.user.save(update_fields=['phone'])
        changed.append('phone')
    for key, attr in PROFILE_FIELDS.items():
        if key in values:
            setattr(profile, attr, values[key])
            changed.append(attr)
    if changed:
        profile.save()
    return changed
