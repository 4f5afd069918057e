from django.urls import path
from rest_framework.routers import SimpleRouter

from .api import (
    PaymentViewSet,
    mpesa_callback,
    mpesa_status,
    mpesa_stk_push,
    payment_config,
    stripe_checkout_session,
    stripe_create_intent,
    stripe_webhook,
)

app_name = "payments"

router = SimpleRouter()
router.register(r"", PaymentViewSet, basename="payment")

urlpatterns = [
    path("config/", payment_config, name="config"),
    path("stripe/create-intent/", stripe_create_intent, name="stripe_create_intent"),
    path("stripe/checkout-session/", stripe_checkout_session, name="stripe_checkout_session"),
    path("stripe/webhook/", stripe_webhook, name="stripe_webhook"),
    path("mpesa/stk-push/", mpesa_stk_push, name="mpesa_stk_push"),
    path("mpesa/status/<str:checkout_request_id>/", mpesa_status, name="mpesa_status"),
    path("mpesa/callback/", mpesa_callback, name="mpesa_callback"),
] + router.urls
