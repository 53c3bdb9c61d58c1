from django.contrib import admin

from .models import Payment, PaymentEventLog


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("external_intent_id", "booking", "amount", "currency", "status", "needs_review", "created_at")
    list_filter = ("status", "needs_review")
    search_fields = ("external_intent_id", "booking__id", "booking__user__email")
    readonly_fields = ("external_intent_id", "booking", "amount", "currency", "created_at", "updated_at")


@admin.register(PaymentEventLog)
class PaymentEventLogAdmin(admin.ModelAdmin):
    list_display = ("received_at", "source", "event_type", "intent_id", "outcome", "applied")
    list_filter = ("source", "outcome", "applied")
    search_fields = ("intent_id", "event_id")
