import bleach
from django.conf import settings
from rest_framework import serializers


class MessageCreateSerializer(serializers.Serializer):
    patientId = serializers.IntegerField(min_value=1)
    content = serializers.CharField(allow_blank=False, trim_whitespace=True)
    operatorId = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    mentions = serializers.ListField(child=serializers.IntegerField(min_value=1), required=False, default=list)
    replyToId = serializers.IntegerField(min_value=1, required=False, allow_null=True)

    def validate_content(self, v):
        v = bleach.clean((v or '').strip(), tags=[], strip=True)
        if not v:
            raise serializers.ValidationError('Message cannot be empty')
        if len(v) > settings.MESSAGE_MAX_CHARS:
            raise serializers.ValidationError(f'Message cannot exceed {settings.MESSAGE_MAX_CHARS} characters')
        return v


class GroupMessageCreateSerializer(MessageCreateSerializer):
    patientId = None


class ThreadQuerySerializer(serializers.Serializer):
    otherParticipantId = serializers.IntegerField(min_value=1, required=False)
    page = serializers.IntegerField(min_value=1, required=False)
    pageSize = serializers.IntegerField(min_value=1, required=False)
