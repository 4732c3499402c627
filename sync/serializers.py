from rest_framework import serializers


class SyncEventPayloadSerializer(serializers.Serializer):
    event_id = serializers.UUIDField()
    event_type = serializers.CharField()
    payload = serializers.JSONField()
    created_at = serializers.DateTimeField(required=False, allow_null=True)

    def validate_payload(self, value):
        if not isinstance(value, dict):
            raise serializers.ValidationError("Payload must be an object.")
        return value


class SyncPushSerializer(serializers.Serializer):
    device_id = serializers.UUIDField()
    events = SyncEventPayloadSerializer(many=True)
    validate_only = serializers.BooleanField(required=False, default=False)


class SyncPullSerializer(serializers.Serializer):
    device_id = serializers.UUIDField()
    cursor = serializers.IntegerField(min_value=0)
    limit = serializers.IntegerField(min_value=1, max_value=1000, default=500)
