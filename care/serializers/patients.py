import bleach
from rest_framework import serializers


def clean_text(v):
    return bleach.clean((v or '').strip(), tags=[], strip=True)


class PatientCreateSerializer(serializers.Serializer):
    firstName = serializers.CharField(max_length=150)
    lastName = serializers.CharField(max_length=150, required=False, allow_blank=True)
    email = serializers.EmailField(required=False, allow_blank=True)
    phone = serializers.CharField(required=False, allow_blank=True, max_length=32)
    dateOfBirth = serializers.DateField(required=False, allow_null=True)
    password = serializers.CharField(required=False, allow_blank=True, write_only=True)

    def validate_firstName(self, v):
        v = clean_text(v)
        if not v:
            raise serializers.ValidationError('First name is required')
        return v

    def validate_lastName(self, v):
        return clean_text(v)

    def validate_phone(self, v):
        return clean_text(v)


class PatientUpdateSerializer(serializers.Serializer):
    phone = serializers.CharField(required=False, allow_blank=True, max_length=32)
    dateOfBirth = serializers.DateField(required=False, allow_null=True)
    isInTreatment = serializers.BooleanField(required=False)
    medicalHistory = serializers.CharField(required=False, allow_blank=True)
    allergies = serializers.CharField(required=False, allow_blank=True)
    medications = serializers.CharField(required=False, allow_blank=True)
    previousTreatments = serializers.CharField(required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)

    def to_internal_value(self, data):
        values = super().to_internal_value(data)
        for key, value in values.items():
            if isinstance(value, str):
                values[key] = clean_text(value)
        return values


class PatientListQuerySerializer(serializers.Serializer):
    q = serializers.CharField(required=False, max_length=64)
    inTreatment = serializers.BooleanField(required=False, allow_null=True, default=None)
    page = serializers.IntegerField(required=False, min_value=1)
    pageSize = serializers.IntegerField(required=False, min_value=1, max_value=200)


class AccessGrantSerializer(serializers.Serializer):
    operatorId = serializers.IntegerField(min_value=1)
    canView = serializers.BooleanField(required=False, default=True)
    canEdit = serializers.BooleanField(required=False, default=False)
