"""
Patient record endpoints.

Listing is scoped by role (admins see everyone, other operators see
the patients they hold a view grant for, patients see themselves).
Reading a single record passes the view rule, editing it passes the
edit rule, which administrators never satisfy.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from care.exceptions import AccessDenied
from care.permissions import CanViewOrEditPatient, IsAdminRole
from care.serializers.patients import PatientCreateSerializer, PatientListQuerySerializer, PatientUpdateSerializer
from care.services.audit import client_ip, try_log_action
from care.services.patients import create_patient, format_patient, get_profile_or_404, update_patient, visible_patients


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def patients(request):
    if request.method == 'POST':
        return _create_patient(request)
    q = PatientListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = visible_patients(
        request.user, q=q.validated_data.get('q'), in_treatment=q.validated_data.get('inTreatment'),
    )
    total = qs.count()
    page = q.validated_data.get('page') or 1
    page_size = q.validated_data.get('pageSize') or 50
    start = (page-1)*page_size
    data = [format_patient(p) for p in qs[start:start+page_size]]
    return Response({'ok': True, 'data': data, 'pagination': {'total': total, 'page': page, 'pageSize': page_size}})


def _create_patient(request):
    if not IsAdminRole().has_permission(request, None):
        raise AccessDenied('Only administrators can create patients')
    s = PatientCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    user, profile, initial_password = create_patient(
        first_name=vd['firstName'],
        last_name=vd.get('lastName', ''),
        email=vd.get('email', ''),
        phone=vd.get('phone', ''),
        date_of_birth=vd.get('dateOfBirth'),
        password=vd.get('password') or None,
    )
    try_log_action(user=request.user, action='patient_create', object_type='patient', object_id=user.id,
                   detail={'ip': client_ip(request)})
    return Response({'ok': True, 'patient': format_patient(profile, detail=True), 'initialPassword': initial_password}, status=201)


@api_view(['GET', 'PATCH'])
@permission_classes([IsAuthenticated, CanViewOrEditPatient])
def patient_detail(request, patient_id: int):
    profile = get_profile_or_404(patient_id)
    if request.method == 'GET':
        try_log_action(user=request.user, action='patient_view', object_type='patient', object_id=patient_id,
                       detail={'viaGrant': request.patient_access is not None})
        return Response({'ok': True, 'patient': format_patient(profile, detail=True)})

    s = PatientUpdateSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    changed = update_patient(profile, s.validated_data)
    if changed:
        try_log_action(user=request.user, action='patient_update', object_type='patient', object_id=patient_id,
                       detail={'fields': changed, 'ip': client_ip(request)})
    profile.refresh_from_db()
    return Response({'ok': True, 'patient': format_patient(profile, detail=True)})
