"""
ORM side of the access-control model.

:func:`find_grant` is the lookup injected into :mod:`care.access`; the
rest of the module creates, revokes and enumerates grants.
"""
from __future__ import annotations

import logging
from typing import Optional

from care.access import Actor, Grant, can_view, can_edit
from care.models import PatientAccess, User
from care.realtime.rooms import PATIENT, room_name
from care.services import notifications

logger = logging.getLogger(__name__)


def find_grant(patient_id: int, operator_id: int) -> Optional[Grant]:
    row = (
        PatientAccess.objects
        .filter(patient_id=patient_id, operator_id=operator_id)
        .values('can_view', 'can_edit')
        .first()
    )
    if row is None:
        return None
    return Grant(can_view=row['can_view'], can_edit=row['can_edit'])


def actor_can_view(actor: Optional[Actor], patient_id) -> bool:
    return can_view(actor, patient_id, find_grant)


def actor_can_edit(actor: Optional[Actor], patient_id) -> bool:
    return can_edit(actor, patient_id, find_grant)


def grant_access(patient_id: int, operator_id: int, *, can_edit: bool = False) -> tuple[PatientAccess, bool]:
    """Create or update the grant for ``(patient, operator)``.

    Granting always implies ``can_view``.  Returns ``(grant, created)``.
    """
    access, created = PatientAccess.objects.update_or_create(
        patient_id=patient_id,
        operator_id=operator_id,
        defaults={'can_view': True, 'can_edit': bool(can_edit)},
    )
    logger.info("grant %s patient=%s operator=%s edit=%s",
                'created' if created else 'updated', patient_id, operator_id, access.can_edit)
    return access, created


def revoke_access(patient_id: int, operator_id: int) -> bool:
    """Delete the grant; returns False when there was nothing to revoke.

    Open sockets of an operator who can no longer view the patient are
    removed from the patient room.
    """
    deleted, _ = PatientAccess.objects.filter(patient_id=patient_id, operator_id=operator_id).delete()
    if deleted:
        logger.info("grant revoked patient=%s operator=%s", patient_id, operator_id)
        operator = User.objects.filter(id=operator_id).first()
        if operator is not None and not actor_can_view(operator.actor, patient_id):
            notifications.evict_from_room(operator_id, room_name(PATIENT, patient_id), 'access_revoked')
    return bool(deleted)


def viewer_ids(patient_id: int) -> list[int]:
    return list(
        PatientAccess.objects
        .filter(patient_id=patient_id, can_view=True)
        .order_by('operator_id')
        .values_list('operator_id', flat=True)
    )


def granted_patient_ids(operator_id: int) -> list[int]:
    return list(
        PatientAccess.objects
        .filter(operator_id=operator_id, can_view=True)
        .values_list('patient_id', flat=True)
    )
