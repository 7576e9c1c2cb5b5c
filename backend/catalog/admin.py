from django.contrib import admin

from .models import Service


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ("name", "provider", "price_cents", "duration_minutes", "active")
    list_filter = ("active",)
    search_fields = ("name", "provider__email", "provider__username")
