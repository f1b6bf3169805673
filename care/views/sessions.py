from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from care.access import require_edit
from care.models import TreatmentSession
from care.permissions import CanViewOrEditPatient, request_actor
from care.serializers.sessions import SessionCreateSerializer, SessionUpdateSerializer
from care.services.grants import find_grant
from care.services.treatment import format_session, get_session_or_404, list_sessions, schedule_session, update_session


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, CanViewOrEditPatient])
def patient_sessions(request, patient_id: int):
    if request.method == 'GET':
        status = request.query_params.get('status')
        if status and status not in dict(TreatmentSession.STATUS_CHOICES):
            status = None
        return Response({'ok': True, 'data': list_sessions(patient_id, status=status)})
    s = SessionCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    session = schedule_session(
        request.user, patient_id,
        scheduled_at=s.validated_data['scheduledAt'],
        operator_id=s.validated_data.get('operatorId'),
        notes=s.validated_data.get('notes', ''),
    )
    return Response({'ok': True, 'session': format_session(session)}, status=201)


@api_view(['PATCH'])
@permission_classes([IsAuthenticated])
def session_detail(request, session_id: int):
    session = get_session_or_404(session_id)
    # gate on the session's patient, not on anything in the body
    require_edit(request_actor(request), session.patient_id, find_grant)
    s = SessionUpdateSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    session = update_session(request.user, session, s.validated_data)
    return Response({'ok': True, 'session': format_session(session)})
