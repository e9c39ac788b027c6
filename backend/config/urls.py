from django.contrib import admin
from django.urls import include, path
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from payments.api import (
    PaymentIntentCreateView,
    PaymentVerifyView,
    PaymentViewSet,
    ReconcileView,
    StripeWebhookView,
)

router = DefaultRouter()
router.register(r"payments", PaymentViewSet, basename="payment")

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/auth/login/", TokenObtainPairView.as_view(), name="auth-login"),
    path("api/auth/refresh/", TokenRefreshView.as_view(), name="auth-refresh"),
    path("api/payments/intents/", PaymentIntentCreateView.as_view(), name="payment-intent-create"),
    path("api/payments/reconcile/", ReconcileView.as_view(), name="payment-reconcile"),
    path(
        "api/payments/<str:reference>/verify/",
        PaymentVerifyView.as_view(),
        name="payment-verify",
    ),
    path("api/", include(router.urls)),
    path("api/webhooks/stripe/", StripeWebhookView.as_view(), name="stripe-webhook"),
]
