from django.contrib import admin
from django.urls import include, path
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenRefreshView

from accounts.api import LoginView, MeView, RegisterView
from bookings.api import BookingViewSet
from catalog.api import ServiceViewSet
from payments.api import StripeWebhookView

router = DefaultRouter()
router.register(r"bookings", BookingViewSet, basename="booking")
router.register(r"services", ServiceViewSet, basename="service")

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/auth/register/", RegisterView.as_view(), name="auth-register"),
    path("api/auth/login/", LoginView.as_view(), name="auth-login"),
    path("api/auth/refresh/", TokenRefreshView.as_view(), name="auth-refresh"),
    path("api/auth/me/", MeView.as_view(), name="auth-me"),
    path("api/", include(router.urls)),
    path("api/webhooks/stripe/", StripeWebhookView.as_view(), name="stripe-webhook"),
]
