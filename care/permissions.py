"""
Custom permission classes for role and patient based access control.
"""
from rest_framework.permissions import BasePermission, SAFE_METHODS

from care.access import require_edit, require_view
from care.services.grants import find_grant


def request_actor(request):
    """Return the access-control actor for the request, or ``None``."""
    user = getattr(request, "user", None)
    if not (user and user.is_authenticated):
        return None
    return user.actor


class IsAdminRole(BasePermission):
    """Allow access only to operators with the administrative role."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        actor = request_actor(request)
        return bool(actor and actor.is_admin)


class IsOperator(BasePermission):
    """Allow access only to clinic staff (any role)."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        actor = request_actor(request)
        return bool(actor and not actor.is_patient)


class _PatientGate(BasePermission):
    """Resolve the target patient and run one access rule.

    The patient id comes from the ``patient_id`` URL kwarg, falling back
    to ``patientId`` in the body.  The resolved grant (``None`` for self
    and admin access) is left on ``request.patient_access``.  Denials
    raise, so the error carries the rule's reason instead of DRF's
    generic message.
    """
    url_kwarg = "patient_id"
    body_field = "patientId"

    def rule_for(self, request):
        raise NotImplementedError

    def patient_id(self, request, view):
        kwargs = getattr(view, "kwargs", None) or {}
        if kwargs.get(self.url_kwarg) is not None:
            return kwargs[self.url_kwarg]
        data = getattr(request, "data", None)
        if hasattr(data, "get"):
            return data.get(self.body_field)
        return None

    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        rule = self.rule_for(request)
        request.patient_access = rule(request_actor(request), self.patient_id(request, view), find_grant)
        return True


class CanViewPatient(_PatientGate):
    def rule_for(self, request):
        return require_view


class CanEditPatient(_PatientGate):
    def rule_for(self, request):
        return require_edit


class CanViewOrEditPatient(_PatientGate):
    """View rule for safe methods, edit rule for writes."""
    def rule_for(self, request):
        return require_view if request.method in SAFE_METHODS else require_edit
