from rest_framework import serializers

from bookings.models import Booking


class BookingSerializer(serializers.ModelSerializer):
    space_id = serializers.UUIDField(read_only=True)
    space_name = serializers.CharField(source="space.name", read_only=True)
    user_id = serializers.IntegerField(read_only=True)
    user_email = serializers.EmailField(source="user.email", read_only=True)

    class Meta:
        model = Booking
        fields = [
            "id",
            "space_id",
            "space_name",
            "user_id",
            "user_email",
            "start_date",
            "end_date",
            "start_time",
            "end_time",
            "total_days",
            "people_count",
            "base_price",
            "fees",
            "total_price",
            "currency",
            "status",
            "notes",
            "special_requests",
            "cancellation_reason",
            "cancelled_at",
            "confirmed_at",
            "completed_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class BookingWindowSerializer(serializers.Serializer):
    start_date = serializers.DateField()
    end_date = serializers.DateField()
    start_time = serializers.TimeField(required=False, allow_null=True, format="%H:%M")
    end_time = serializers.TimeField(required=False, allow_null=True, format="%H:%M")

    def validate(self, attrs):
        start_date = attrs.get("start_date")
        end_date = attrs.get("end_date")
        if start_date and end_date and end_date < start_date:
            raise serializers.ValidationError({"end_date": "End date must be on or after the start date."})
        start_time = attrs.get("start_time")
        end_time = attrs.get("end_time")
        if (start_time is None) != (end_time is None) and ("start_time" in attrs or "end_time" in attrs):
            raise serializers.ValidationError({"end_time": "Provide both start_time and end_time, or neither."})
        if start_time and end_time and end_time <= start_time:
            raise serializers.ValidationError({"end_time": "End time must be after the start time."})
        return attrs


class BookingCreateSerializer(BookingWindowSerializer):
    space_id = serializers.UUIDField()
    people_count = serializers.IntegerField(min_value=1)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=1000, default="")
    special_requests = serializers.CharField(required=False, allow_blank=True, max_length=1000, default="")


class BookingUpdateSerializer(BookingWindowSerializer):
    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False)
    people_count = serializers.IntegerField(min_value=1, required=False)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=1000)
    special_requests = serializers.CharField(required=False, allow_blank=True, max_length=1000)

    def validate(self, attrs):
        # Window rules need the stored values too; the lifecycle service checks the merged window.
        if not attrs:
            raise serializers.ValidationError("No valid fields to update.")
        return attrs


class BookingCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=1000, default="")


class AvailabilityQuerySerializer(BookingWindowSerializer):
    space_id = serializers.UUIDField()


class ConflictSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = Booking
        fields = ["id", "start_date", "end_date", "start_time", "end_time", "status"]
        read_only_fields = fields
