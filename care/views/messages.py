"""
Patient-thread messaging endpoints.

A patient thread is every message whose scope is one patient.  Each
operator sees the shared part of the thread plus their own 1:1
conversation with the patient; the patient picks an operator with
``otherParticipantId``.  Sending fans out to the ``patient.<id>`` room
and writes a notification per recipient.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle

from care.permissions import CanViewPatient
from care.serializers.messages import MessageCreateSerializer, ThreadQuerySerializer
from care.services.audit import client_ip
from care.services.messages import (
    format_message,
    mark_message_read,
    mark_thread_read,
    patient_thread,
    send_patient_message,
    thread_operators,
)


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanViewPatient])
def patient_messages(request, patient_id: int):
    q = ThreadQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    items, total = patient_thread(
        request.user, patient_id,
        other_participant_id=q.validated_data.get('otherParticipantId'),
        page=q.validated_data.get('page', 1),
        page_size=q.validated_data.get('pageSize', 50),
    )
    return Response({'ok': True, 'data': items, 'pagination': {'total': total, 'page': q.validated_data.get('page', 1), 'pageSize': q.validated_data.get('pageSize', 50)}})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([ScopedRateThrottle])
def send_message(request):
    s = MessageCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    msg = send_patient_message(
        request.user,
        patient_id=vd['patientId'],
        content=vd['content'],
        operator_id=vd.get('operatorId'),
        mentions=vd.get('mentions'),
        reply_to_id=vd.get('replyToId'),
        ip=client_ip(request),
    )
    return Response({'ok': True, 'message': format_message(msg)}, status=201)

send_message.cls.throttle_scope = 'messages'


@api_view(['PUT'])
@permission_classes([IsAuthenticated])
def message_read(request, message_id: int):
    msg = mark_message_read(request.user, message_id)
    return Response({'ok': True, 'message': format_message(msg)})


@api_view(['PUT'])
@permission_classes([IsAuthenticated, CanViewPatient])
def patient_thread_read(request, patient_id: int):
    q = ThreadQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    n = mark_thread_read(request.user, patient_id, other_participant_id=q.validated_data.get('otherParticipantId'))
    return Response({'ok': True, 'updated': n})


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanViewPatient])
def patient_operators(request, patient_id: int):
    return Response({'ok': True, 'data': thread_operators(patient_id)})
