from django.conf import settings
from django.db import models
from django.db.models import Q


class Payment(models.Model):
    """One attempt to pay for a booking through a single provider."""

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"
        CANCELLED = "cancelled", "Cancelled"
        REFUNDED = "refunded", "Refunded"

    class Provider(models.TextChoices):
        CARD = "card", "Card"
        MPESA = "mpesa", "M-Pesa"
        CASH = "cash", "Cash"
        BANK_TRANSFER = "bank_transfer", "Bank transfer"

    MANUAL_PROVIDERS = (Provider.CASH, Provider.BANK_TRANSFER)

    # Same-status updates are handled as no-ops before this table is consulted.
    ALLOWED_TRANSITIONS = {
        Status.PENDING: {Status.COMPLETED, Status.FAILED, Status.CANCELLED},
        Status.FAILED: {Status.COMPLETED},
        Status.CANCELLED: {Status.COMPLETED},
        Status.COMPLETED: {Status.REFUNDED},
        Status.REFUNDED: set(),
    }

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payments",
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=8, default="usd")
    provider = models.CharField(max_length=16, choices=Provider.choices)
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.PENDING,
    )
    external_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="PaymentIntent / Checkout Session / CheckoutRequestID assigned by the provider.",
    )
    phone_number = models.CharField(max_length=16, blank=True, default="")
    failure_reason = models.TextField(blank=True, default="")
    metadata = models.JSONField(default=dict, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["booking", "provider", "status"], name="payments_booking_prov_idx"),
            models.Index(fields=["status", "created_at"], name="payments_status_created_idx"),
            models.Index(fields=["user", "created_at"], name="payments_user_created_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["provider", "external_id"],
                condition=~Q(external_id=""),
                name="payments_provider_external_uniq",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.provider} {self.amount} {self.currency} ({self.status})"

    def can_transition_to(self, new_status: str) -> bool:
        return new_status in self.ALLOWED_TRANSITIONS.get(self.status, set())