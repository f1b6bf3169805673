"""
Rule grid for the pure access-control model.

No database: grants come from an in-memory lookup, so every
combination of role, self/other and grant shape is checked directly.
"""
import pytest

from care.access import (
    AccessDecision,
    Actor,
    Grant,
    can_edit,
    can_view,
    evaluate_edit,
    evaluate_view,
    require_edit,
    require_view,
)
from care.exceptions import AccessCheckFailed, AccessDenied, AuthenticationRequired, PatientIdRequired

PATIENT_ID = 10
OTHER_PATIENT_ID = 11

ADMIN = Actor(id=1, role='admin', user_type='operator')
SUPPORT = Actor(id=2, role='support', user_type='operator')
BASIC = Actor(id=3, role='basic', user_type='operator')
PATIENT = Actor(id=PATIENT_ID, role='basic', user_type='patient')


def lookup(grants):
    def find_grant(patient_id, operator_id):
        return grants.get((patient_id, operator_id))
    return find_grant


NO_GRANTS = lookup({})


@pytest.mark.parametrize('actor', [SUPPORT, BASIC])
def test_operator_without_grant_can_neither_view_nor_edit(actor):
    assert can_view(actor, PATIENT_ID, NO_GRANTS) is False
    assert can_edit(actor, PATIENT_ID, NO_GRANTS) is False


@pytest.mark.parametrize('patient_id', [PATIENT_ID, OTHER_PATIENT_ID, 999])
def test_admin_views_everyone_and_edits_no_one(patient_id):
    assert can_view(ADMIN, patient_id, NO_GRANTS) is True
    assert can_edit(ADMIN, patient_id, NO_GRANTS) is False


def test_admin_cannot_edit_even_with_edit_grant():
    find_grant = lookup({(PATIENT_ID, ADMIN.id): Grant(can_view=True, can_edit=True)})
    decision = evaluate_edit(ADMIN, PATIENT_ID, find_grant)
    assert not decision
    assert decision.reason == 'admin_cannot_edit'
    with pytest.raises(AccessDenied) as exc:
        require_edit(ADMIN, PATIENT_ID, find_grant)
    assert 'cannot edit' in str(exc.value.detail)


def test_patient_has_full_access_to_self_only():
    assert can_view(PATIENT, PATIENT_ID, NO_GRANTS) is True
    assert can_edit(PATIENT, PATIENT_ID, NO_GRANTS) is True
    assert can_view(PATIENT, OTHER_PATIENT_ID, NO_GRANTS) is False
    assert can_edit(PATIENT, OTHER_PATIENT_ID, NO_GRANTS) is False


def test_patient_is_never_granted_another_patient():
    # a stray grant row keyed on the patient's id must not open the door
    find_grant = lookup({(OTHER_PATIENT_ID, PATIENT.id): Grant(can_view=True, can_edit=True)})
    assert can_view(PATIENT, OTHER_PATIENT_ID, find_grant) is False
    assert can_edit(PATIENT, OTHER_PATIENT_ID, find_grant) is False


@pytest.mark.parametrize('grant,view,edit', [
    (Grant(can_view=True, can_edit=False), True, False),
    (Grant(can_view=True, can_edit=True), True, True),
    (Grant(can_view=False, can_edit=False), False, False),
])
def test_operator_follows_grant_flags(grant, view, edit):
    find_grant = lookup({(PATIENT_ID, BASIC.id): grant})
    assert can_view(BASIC, PATIENT_ID, find_grant) is view
    assert can_edit(BASIC, PATIENT_ID, find_grant) is edit
    # a grant for one patient says nothing about another
    assert can_view(BASIC, OTHER_PATIENT_ID, find_grant) is False


def test_require_returns_resolved_grant_for_auditing():
    grant = Grant(can_view=True, can_edit=True)
    find_grant = lookup({(PATIENT_ID, BASIC.id): grant})
    assert require_view(BASIC, PATIENT_ID, find_grant) is grant
    assert require_edit(BASIC, PATIENT_ID, find_grant) is grant
    assert require_view(ADMIN, PATIENT_ID, NO_GRANTS) is None
    assert require_edit(PATIENT, PATIENT_ID, NO_GRANTS) is None


def test_require_edit_reports_missing_edit_flag():
    find_grant = lookup({(PATIENT_ID, BASIC.id): Grant(can_view=True, can_edit=False)})
    with pytest.raises(AccessDenied) as exc:
        require_edit(BASIC, PATIENT_ID, find_grant)
    assert exc.value.status_code == 403
    assert exc.value.detail == 'Edit permission required'


def test_string_patient_ids_are_coerced():
    assert can_view(PATIENT, str(PATIENT_ID), NO_GRANTS) is True
    find_grant = lookup({(PATIENT_ID, BASIC.id): Grant(can_view=True)})
    assert can_view(BASIC, f' {PATIENT_ID} ', find_grant) is True


@pytest.mark.parametrize('bad', [None, '', '   ', 'abc', '1.5', 0, -3, True])
def test_missing_or_malformed_patient_id_is_bad_request(bad):
    with pytest.raises(PatientIdRequired) as exc:
        evaluate_view(BASIC, bad, NO_GRANTS)
    assert exc.value.status_code == 400


def test_missing_actor_is_unauthenticated():
    with pytest.raises(AuthenticationRequired) as exc:
        can_view(None, PATIENT_ID, NO_GRANTS)
    assert exc.value.status_code == 401


def test_lookup_failure_is_internal_error_never_allow():
    def broken(patient_id, operator_id):
        raise RuntimeError('store unavailable')

    with pytest.raises(AccessCheckFailed) as exc:
        can_view(BASIC, PATIENT_ID, broken)
    assert exc.value.status_code == 500
    assert isinstance(exc.value.__cause__, RuntimeError)


def test_lookup_is_not_consulted_for_self_or_admin():
    calls = []

    def spy(patient_id, operator_id):
        calls.append((patient_id, operator_id))
        return None

    evaluate_view(PATIENT, PATIENT_ID, spy)
    evaluate_view(ADMIN, PATIENT_ID, spy)
    evaluate_edit(ADMIN, PATIENT_ID, spy)
    assert calls == []
    evaluate_view(BASIC, PATIENT_ID, spy)
    assert calls == [(PATIENT_ID, BASIC.id)]


def test_decision_is_truthy_only_when_allowed():
    assert bool(AccessDecision(True, 'self')) is True
    assert bool(AccessDecision(False, 'no_grant')) is False
