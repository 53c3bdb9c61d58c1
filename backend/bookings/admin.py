from django.contrib import admin

from payments.models import Payment

from .models import Booking


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    can_delete = False
    fields = ("external_intent_id", "amount", "currency", "status", "needs_review", "completed_at")
    readonly_fields = fields


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ("space", "user", "start_date", "end_date", "people_count", "total_price", "status")
    list_filter = ("status", "space")
    search_fields = ("space__name", "user__email")
    readonly_fields = ("slot_start", "slot_end", "created_at", "updated_at")
    inlines = [PaymentInline]
