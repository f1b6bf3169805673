import bleach
from rest_framework import serializers


class GroupCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True)
    memberIds = serializers.ListField(child=serializers.IntegerField(min_value=1), required=False, default=list)

    def validate_name(self, v):
        v = bleach.clean((v or '').strip(), tags=[], strip=True)
        if not v:
            raise serializers.ValidationError('Group name is required')
        return v

    def validate_description(self, v):
        return bleach.clean((v or '').strip(), tags=[], strip=True)


class GroupMembersSerializer(serializers.Serializer):
    userIds = serializers.ListField(child=serializers.IntegerField(min_value=1), allow_empty=False)
    role = serializers.ChoiceField(choices=['admin', 'moderator', 'member'], required=False, default='member')
