from django.contrib import admin

from .models import Space


@admin.register(Space)
class SpaceAdmin(admin.ModelAdmin):
    list_display = ("name", "city", "manager", "capacity", "price_per_day", "price_per_hour", "is_active")
    list_filter = ("is_active", "city")
    search_fields = ("name", "city", "manager__email")
