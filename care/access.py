"""
Patient access-control decisions.

Everything here is a pure function of an :class:`Actor`, a target
patient id and an injected ``find_grant(patient_id, operator_id)``
lookup, so the rules can be exercised without a request, a socket or a
database.  The ORM-backed lookup lives in :mod:`care.services.grants`;
HTTP views reach these rules through the permission classes in
:mod:`care.permissions`.

View rules, in order:
  * a patient always sees their own record;
  * the ``admin`` role sees every patient;
  * anyone else needs a grant with ``can_view``.

Edit rules, in order:
  * a patient always edits their own record;
  * the ``admin`` role never edits clinical data, whatever grants exist;
  * anyone else needs a grant with ``can_edit``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from care.exceptions import (
    AccessCheckFailed,
    AccessDenied,
    AuthenticationRequired,
    PatientIdRequired,
)

logger = logging.getLogger(__name__)

ADMIN_ROLE = 'admin'
PATIENT_TYPE = 'patient'

VIEW = 'view'
EDIT = 'edit'


@dataclass(frozen=True)
class Actor:
    """The authenticated identity performing an operation."""
    id: int
    role: Optional[str] = None
    user_type: Optional[str] = None

    @property
    def is_patient(self) -> bool:
        return self.user_type == PATIENT_TYPE

    @property
    def is_admin(self) -> bool:
        return not self.is_patient and self.role == ADMIN_ROLE


@dataclass(frozen=True)
class Grant:
    can_view: bool = False
    can_edit: bool = False


GrantLookup = Callable[[int, int], Optional[Grant]]


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str
    grant: Optional[Grant] = None

    def __bool__(self) -> bool:
        return self.allowed


def normalize_patient_id(patient_id) -> int:
    """Coerce a path/payload patient id to ``int``.

    Raises :class:`PatientIdRequired` when the id is missing or is not
    a positive integer.
    """
    if patient_id is None or (isinstance(patient_id, str) and not patient_id.strip()):
        raise PatientIdRequired()
    if isinstance(patient_id, bool):
        raise PatientIdRequired('Patient ID must be an integer')
    try:
        value = int(patient_id)
    except (TypeError, ValueError):
        raise PatientIdRequired('Patient ID must be an integer')
    if value <= 0:
        raise PatientIdRequired('Patient ID must be an integer')
    return value


def _lookup(find_grant: GrantLookup, patient_id: int, actor: Actor) -> Optional[Grant]:
    try:
        return find_grant(patient_id, actor.id)
    except Exception as exc:
        logger.exception("grant lookup failed for patient=%s operator=%s", patient_id, actor.id)
        raise AccessCheckFailed() from exc


def _evaluate(mode: str, actor: Optional[Actor], patient_id, find_grant: GrantLookup) -> AccessDecision:
    if actor is None:
        raise AuthenticationRequired()
    pid = normalize_patient_id(patient_id)

    if actor.is_patient:
        if actor.id == pid:
            return AccessDecision(True, 'self')
        # patients are never granted access to another patient
        return AccessDecision(False, 'other_patient')

    if actor.is_admin:
        if mode == VIEW:
            return AccessDecision(True, 'admin')
        return AccessDecision(False, 'admin_cannot_edit')

    grant = _lookup(find_grant, pid, actor)
    if grant is None:
        return AccessDecision(False, 'no_grant')
    if mode == VIEW:
        allowed = bool(grant.can_view)
    else:
        allowed = bool(grant.can_edit)
    return AccessDecision(allowed, 'grant' if allowed else f'grant_without_{mode}', grant)


def evaluate_view(actor: Optional[Actor], patient_id, find_grant: GrantLookup) -> AccessDecision:
    return _evaluate(VIEW, actor, patient_id, find_grant)


def evaluate_edit(actor: Optional[Actor], patient_id, find_grant: GrantLookup) -> AccessDecision:
    return _evaluate(EDIT, actor, patient_id, find_grant)


def can_view(actor: Optional[Actor], patient_id, find_grant: GrantLookup) -> bool:
    return evaluate_view(actor, patient_id, find_grant).allowed


def can_edit(actor: Optional[Actor], patient_id, find_grant: GrantLookup) -> bool:
    return evaluate_edit(actor, patient_id, find_grant).allowed


_DENIAL_MESSAGES = {
    'other_patient': 'Access denied',
    'no_grant': 'No access to this patient',
    'grant_without_view': 'No access to this patient',
    'grant_without_edit': 'Edit permission required',
    'admin_cannot_edit': (
        'Administrators can view patient data but cannot edit medical information. '
        'Only assigned operators can edit patient records.'
    ),
}


def _require(decision: AccessDecision) -> Optional[Grant]:
    if not decision.allowed:
        raise AccessDenied(_DENIAL_MESSAGES.get(decision.reason, 'Access denied'))
    return decision.grant


def require_view(actor: Optional[Actor], patient_id, find_grant: GrantLookup) -> Optional[Grant]:
    """Return the resolved grant (``None`` for self/admin) or raise."""
    return _require(evaluate_view(actor, patient_id, find_grant))


def require_edit(actor: Optional[Actor], patient_id, find_grant: GrantLookup) -> Optional[Grant]:
    """Return the resolved grant (``None`` for self) or raise."""
    return _require(evaluate_edit(actor, patient_id, find_grant))
