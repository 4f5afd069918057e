from django.db import models


class Location(models.Model):
    """Branch where vehicles are picked up and returned."""

    name = models.CharField(max_length=120)
    address = models.CharField(max_length=255)
    city = models.CharField(max_length=120, blank=True, default="")
    contact_phone = models.CharField(max_length=16, blank=True, default="")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["city"], name="locations_city_idx"),
        ]

    def __str__(self) -> str:
        return self.name
