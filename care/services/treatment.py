import logging

from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from care.models import TreatmentSession
from care.realtime.fanout import FanoutEvent, fanout
from care.realtime.rooms import PATIENT, Scope
from care.services import notifications
from care.services.audit import try_log_action

User = get_user_model()
logger = logging.getLogger(__name__)


def format_session(s: TreatmentSession) -> dict:
    return {
        'id': s.id,
        'patientId': s.patient_id,
        'operatorId': s.operator_id,
        'scheduledAt': s.scheduled_at.isoformat(),
        'status': s.status,
        'notes': s.notes,
        'createdAt': s.created_at.isoformat(),
        'updatedAt': s.updated_at.isoformat(),
    }


def get_session_or_404(session_id: int) -> TreatmentSession:
    s = TreatmentSession.objects.filter(id=session_id).first()
    if not s:
        raise NotFound('Session not found')
    return s


def list_sessions(patient_id: int, *, status=None) -> list[dict]:
    qs = TreatmentSession.objects.filter(patient_id=patient_id)
    if status:
        qs = qs.filter(status=status)
    return [format_session(s) for s in qs.order_by('scheduled_at', 'id')]


def _emit(event_type: str, session: TreatmentSession, by, title: str, message: str, notification_type: str):
    payload = {
        'eventType': event_type,
        'sessionId': session.id,
        'patientId': session.patient_id,
        'data': format_session(session),
        'timestamp': timezone.now().isoformat(),
    }
    # the live event goes to the patient room, the durable record to the patient only
    fanout.dispatch(FanoutEvent(
        scope=Scope(PATIENT, session.patient_id),
        event='session-event',
        payload=payload,
        notification_type=notification_type,
        title=title,
        message=message,
        data={'sessionId': session.id, 'patientId': session.patient_id, 'eventType': event_type},
        sender_id=by.id,
        recipients=[session.patient_id],
    ))


def schedule_session(by, patient_id: int, *, scheduled_at, operator_id=None, notes='') -> TreatmentSession:
    if not User.objects.filter(id=patient_id, user_type=User.TYPE_PATIENT).exists():
        raise NotFound('Patient not found')
    if operator_id and not User.objects.filter(id=operator_id, user_type=User.TYPE_OPERATOR).exists():
        raise ValidationError({'operatorId': 'Operator not found'})
    if operator_id is None and not by.actor.is_patient:
        operator_id = by.id
    session = TreatmentSession.objects.create(
        patient_id=patient_id, operator_id=operator_id, scheduled_at=scheduled_at, notes=notes or '',
    )
    try_log_action(user=by, action='session_create', object_type='session', object_id=session.id,
                   detail={'patientId': patient_id})
    _emit('SESSION_CREATED', session, by,
          'Treatment session scheduled',
          f"A session was scheduled for {timezone.localtime(session.scheduled_at):%Y-%m-%d %H:%M}",
          notifications.SESSION_SCHEDULED)
    return session


def update_session(by, session: TreatmentSession, values: dict) -> TreatmentSession:
    fields = []
    if 'scheduledAt' in values:
        session.scheduled_at = values['scheduledAt']
        fields.append('scheduled_at')
    if 'status' in values:
        session.status = values['status']
        fields.append('status')
    if 'notes' in values:
        session.notes = values['notes']
        fields.append('notes')
    if not fields:
        return session
    session.save(update_fields=fields + ['updated_at'])
    try_log_action(user=by, action='session_update', object_type='session', object_id=session.id,
                   detail={'fields': fields})
    event_type = {
        TreatmentSession.STATUS_COMPLETED: 'SESSION_COMPLETED',
        TreatmentSession.STATUS_CANCELLED: 'SESSION_CANCELLED',
    }.get(session.status if 'status' in values else None, 'SESSION_UPDATED')
    _emit(event_type, session, by,
          'Treatment session updated',
          f"Your session is now {session.get_status_display().lower()}",
          notifications.SESSION_UPDATED)
    return session
