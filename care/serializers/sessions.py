import bleach
from rest_framework import serializers

from care.models import TreatmentSession


class SessionCreateSerializer(serializers.Serializer):
    scheduledAt = serializers.DateTimeField()
    operatorId = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate_notes(self, v):
        return bleach.clean((v or '').strip(), tags=[], strip=True)


class SessionUpdateSerializer(serializers.Serializer):
    scheduledAt = serializers.DateTimeField(required=False)
    status = serializers.ChoiceField(choices=[c[0] for c in TreatmentSession.STATUS_CHOICES], required=False)
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate_notes(self, v):
        return bleach.clean((v or '').strip(), tags=[], strip=True)
