from rest_framework import permissions, viewsets

from core.exceptions import PermissionDenied
from .models import Service
from .serializers import ServiceSerializer


class ServiceViewSet(viewsets.ModelViewSet):
    serializer_class = ServiceSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ["provider", "active"]
    ordering_fields = ["name", "price_cents", "created_at"]
    http_method_names = ["get", "post", "patch", "head", "options"]

    def get_queryset(self):
        return Service.objects.select_related("provider").order_by("name", "id")

    def perform_create(self, serializer):
        serializer.save(provider=self.request.user)

    def perform_update(self, serializer):
        if serializer.instance.provider_id != self.request.user.id:
            raise PermissionDenied("Only the provider can edit this service.")
        serializer.save()
