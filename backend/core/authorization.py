"""
Single authorization gate for booking and payment operations.

A principal's relation to a booking is expressed as a set of capabilities;
each operation lists the capabilities that may perform it. Views and services
call :func:`authorize` instead of comparing roles inline.
"""

from __future__ import annotations

from django.db.models import Q
from rest_framework.permissions import BasePermission

from core.exceptions import Forbidden

OWNER = "owner"
SPACE_MANAGER = "space_manager"
ADMIN = "admin"

POLICIES: dict[str, frozenset[str]] = {
    "view": frozenset({OWNER, SPACE_MANAGER, ADMIN}),
    "update": frozenset({OWNER}),
    "cancel": frozenset({OWNER, SPACE_MANAGER, ADMIN}),
    "confirm": frozenset({SPACE_MANAGER, ADMIN}),
    "complete": frozenset({SPACE_MANAGER, ADMIN}),
    "create_intent": frozenset({OWNER}),
    "confirm_payment": frozenset({OWNER, ADMIN}),
}

# Operations the platform itself may run without a principal (payment success, batch jobs).
SYSTEM_OPERATIONS = frozenset({"confirm", "complete"})

DENIED_MESSAGES = {
    "view": "You do not have permission to view this booking.",
    "update": "Only the booking owner can modify this booking.",
    "cancel": "You do not have permission to cancel this booking.",
    "confirm": "Only the space manager or an administrator can confirm this booking.",
    "complete": "Only the space manager or an administrator can complete this booking.",
    "create_intent": "Only the booking owner can pay for this booking.",
    "confirm_payment": "You do not have permission to confirm this payment.",
}


def capabilities_for(user, booking) -> set[str]:
    if user is None or not getattr(user, "is_authenticated", False):
        return set()
    granted = set()
    if user.is_platform_admin:
        granted.add(ADMIN)
    if booking.user_id == user.pk:
        granted.add(OWNER)
    if booking.space.manager_id == user.pk:
        granted.add(SPACE_MANAGER)
    return granted


def can(user, operation: str, booking) -> bool:
    if user is None:
        return operation in SYSTEM_OPERATIONS
    return bool(capabilities_for(user, booking) & POLICIES[operation])


def authorize(user, operation: str, booking) -> None:
    """Raise :class:`Forbidden` unless ``user`` may run ``operation`` on ``booking``."""
    if not can(user, operation, booking):
        raise Forbidden(DENIED_MESSAGES.get(operation))


def scope_visible(user, queryset, *, booking_path: str = ""):
    """
    Narrow ``queryset`` to rows tied to bookings ``user`` may view.

    ``booking_path`` is the lookup from the queryset model to its booking
    (``"booking"`` for payments); empty when the queryset holds bookings.
    """
    if user.is_platform_admin:
        return queryset
    prefix = f"{booking_path}__" if booking_path else ""
    return queryset.filter(Q(**{f"{prefix}user": user}) | Q(**{f"{prefix}space__manager": user}))


class CanViewBooking(BasePermission):
    """Object-level gate for booking detail routes; mutations authorize in the services."""

    def has_object_permission(self, request, view, obj):
        authorize(request.user, "view", obj)
        return True
