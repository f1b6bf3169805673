"""
Grant management: administrators assign operators to patients.
"""
from __future__ import annotations

import logging

from django.contrib.auth import get_user_model
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from care.access import normalize_patient_id
from care.models import PatientAccess
from care.permissions import IsAdminRole
from care.serializers.patients import AccessGrantSerializer
from care.services import notifications
from care.services.audit import client_ip, try_log_action
from care.services.grants import grant_access, revoke_access

User = get_user_model()
logger = logging.getLogger(__name__)


def format_access(a: PatientAccess) -> dict:
    return {
        'patientId': a.patient_id,
        'operatorId': a.operator_id,
        'canView': a.can_view,
        'canEdit': a.can_edit,
        'updatedAt': a.updated_at.isoformat(),
    }


def _patient_or_404(patient_id) -> User:
    patient = User.objects.filter(id=normalize_patient_id(patient_id), user_type=User.TYPE_PATIENT).first()
    if not patient:
        raise NotFound('Patient not found')
    return patient


def _notify_assignment(patient, operator, access: PatientAccess) -> None:
    sent = [
        (operator.id, 'New patient assigned',
         f"You have been given access to {patient.display_name}", notifications.PATIENT_ASSIGNED),
        (patient.id, 'Care team updated',
         f"{operator.display_name} has joined your care team", notifications.OPERATOR_ASSIGNED),
    ]
    for recipient_id, title, message, ntype in sent:
        try:
            notifications.send_notification(
                recipient_id=recipient_id, title=title, message=message, type=ntype,
                data={'patientId': patient.id, 'operatorId': operator.id, 'canEdit': access.can_edit},
            )
        except Exception:
            logger.exception("assignment notification for user %s failed", recipient_id)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def patient_access(request, patient_id: int):
    patient = _patient_or_404(patient_id)
    if request.method == 'GET':
        rows = PatientAccess.objects.filter(patient=patient).order_by('operator_id')
        return Response({'ok': True, 'data': [format_access(a) for a in rows]})

    s = AccessGrantSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    operator = User.objects.filter(id=s.validated_data['operatorId'], user_type=User.TYPE_OPERATOR).first()
    if not operator:
        raise NotFound('Operator not found')

    if not s.validated_data['canView']:
        revoked = revoke_access(patient.id, operator.id)
        try_log_action(user=request.user, action='access_revoke', object_type='patient', object_id=patient.id,
                       detail={'operatorId': operator.id, 'revoked': revoked, 'ip': client_ip(request)})
        return Response({'ok': True, 'revoked': revoked, 'access': None})

    access, created = grant_access(patient.id, operator.id, can_edit=s.validated_data['canEdit'])
    try_log_action(user=request.user, action='access_grant', object_type='patient', object_id=patient.id,
                   detail={'operatorId': operator.id, 'canEdit': access.can_edit, 'created': created,
                           'ip': client_ip(request)})
    if created:
        _notify_assignment(patient, operator, access)
    return Response({'ok': True, 'access': format_access(access)}, status=201 if created else 200)


@api_view(['DELETE'])
@permission_classes([IsAuthenticated, IsAdminRole])
def revoke_patient_access(request, patient_id: int, operator_id: int):
    patient = _patient_or_404(patient_id)
    revoked = revoke_access(patient.id, operator_id)
    try_log_action(user=request.user, action='access_revoke', object_type='patient', object_id=patient.id,
                   detail={'operatorId': operator_id, 'revoked': revoked, 'ip': client_ip(request)})
    if revoked:
        try:
            notifications.send_notification(
                recipient_id=operator_id, title='Patient access removed',
                message=f"Your access to {patient.display_name} was removed",
                type=notifications.ACCESS_REVOKED, data={'patientId': patient.id},
            )
        except Exception:
            logger.exception("revocation notification for user %s failed", operator_id)
    return Response({'ok': True, 'revoked': revoked})
