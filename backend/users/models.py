from __future__ import annotations

from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Customer or back-office account; ``role`` drives API access."""

    class Role(models.TextChoices):
        USER = "user", "User"
        ADMIN = "admin", "Admin"
        SUPPORT_AGENT = "support_agent", "Support agent"

    email = models.EmailField(unique=True)
    contact_phone = models.CharField(
        max_length=16,
        blank=True,
        default="",
        help_text="Canonical 254XXXXXXXXX mobile number.",
    )
    address = models.CharField(max_length=255, blank=True, default="")
    role = models.CharField(
        max_length=16,
        choices=Role.choices,
        default=Role.USER,
        db_index=True,
    )
    updated_at = models.DateTimeField(auto_now=True)

    @property
    def is_admin(self) -> bool:
        return self.is_superuser or self.role == self.Role.ADMIN

    @property
    def is_staff_member(self) -> bool:
        return self.is_admin or self.role == self.Role.SUPPORT_AGENT

    @property
    def display_name(self) -> str:
        return self.get_full_name() or self.username
