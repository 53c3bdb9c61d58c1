from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from bookings.models import Booking
from bookings.serializers import (
    AvailabilityQuerySerializer,
    BookingCancelSerializer,
    BookingCreateSerializer,
    BookingSerializer,
    BookingUpdateSerializer,
    ConflictSummarySerializer,
)
from bookings.services import lifecycle
from bookings.services.availability import build_window, find_conflicts, get_active_space
from core.authorization import CanViewBooking, scope_visible


def _booking_response(booking: Booking, message: str, status_code=status.HTTP_200_OK) -> Response:
    return Response(
        {"success": True, "message": message, "booking": BookingSerializer(booking).data},
        status=status_code,
    )


class BookingViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    """
    Booking endpoints. State changes are delegated to the lifecycle service,
    which owns authorization and the status machine.
    """

    serializer_class = BookingSerializer
    permission_classes = [permissions.IsAuthenticated, CanViewBooking]
    filterset_fields = ["status", "space"]
    ordering_fields = ["created_at", "start_date", "total_price"]

    def get_queryset(self):
        queryset = Booking.objects.select_related("space", "user")
        if self.action != "list":
            return queryset
        return scope_visible(self.request.user, queryset)

    def list(self, request, *args, **kwargs):
        queryset = self.filter_queryset(self.get_queryset())
        serializer = self.get_serializer(queryset, many=True)
        return Response({"success": True, "bookings": serializer.data})

    def retrieve(self, request, *args, **kwargs):
        booking = self.get_object()
        return Response({"success": True, "booking": self.get_serializer(booking).data})

    def create(self, request, *args, **kwargs):
        serializer = BookingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        booking = lifecycle.create_booking(
            user=request.user,
            space_id=data["space_id"],
            start_date=data["start_date"],
            end_date=data["end_date"],
            start_time=data.get("start_time"),
            end_time=data.get("end_time"),
            people_count=data["people_count"],
            notes=data.get("notes", ""),
            special_requests=data.get("special_requests", ""),
        )
        return _booking_response(booking, "Booking created.", status.HTTP_201_CREATED)

    def update(self, request, pk=None, *args, **kwargs):
        serializer = BookingUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        booking = lifecycle.update_booking(
            booking_id=pk,
            actor=request.user,
            changes=dict(serializer.validated_data),
        )
        return _booking_response(booking, "Booking updated.")

    def partial_update(self, request, pk=None, *args, **kwargs):
        return self.update(request, pk, *args, **kwargs)

    @action(detail=True, methods=["post"])
    def confirm(self, request, pk=None):
        booking = lifecycle.confirm_booking(booking_id=pk, actor=request.user)
        return _booking_response(booking, "Booking confirmed.")

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        serializer = BookingCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = lifecycle.cancel_booking(
            booking_id=pk,
            actor=request.user,
            reason=serializer.validated_data["reason"],
        )
        return _booking_response(booking, "Booking cancelled.")

    @action(detail=True, methods=["post"])
    def complete(self, request, pk=None):
        booking = lifecycle.complete_booking(booking_id=pk, actor=request.user)
        return _booking_response(booking, "Booking completed.")

    @action(detail=False, methods=["get"], url_path="check-availability")
    def check_availability(self, request):
        serializer = AvailabilityQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        space = get_active_space(data["space_id"])
        window = build_window(
            data["start_date"],
            data["end_date"],
            data.get("start_time"),
            data.get("end_time"),
        )
        conflicts = list(find_conflicts(space, window))
        return Response(
            {
                "success": True,
                "available": not conflicts,
                "has_conflicts": bool(conflicts),
                "conflicts": ConflictSummarySerializer(conflicts, many=True).data,
            }
        )
