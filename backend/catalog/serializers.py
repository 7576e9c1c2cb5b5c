from rest_framework import serializers

from .models import Service


class ServiceSerializer(serializers.ModelSerializer):
    provider_name = serializers.SerializerMethodField()
    price_cents = serializers.IntegerField(min_value=1)
    duration_minutes = serializers.IntegerField(min_value=1)

    class Meta:
        model = Service
        fields = [
            "id",
            "provider",
            "provider_name",
            "name",
            "description",
            "price_cents",
            "duration_minutes",
            "active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["provider", "created_at", "updated_at"]

    def get_provider_name(self, obj: Service) -> str:
        provider = obj.provider
        return provider.display_name or provider.get_full_name() or provider.username
