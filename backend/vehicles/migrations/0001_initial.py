import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("locations", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="VehicleSpecification",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("manufacturer", models.CharField(max_length=80)),
                ("model", models.CharField(max_length=80)),
                ("year", models.PositiveSmallIntegerField()),
                (
                    "fuel_type",
                    models.CharField(
                        choices=[
                            ("petrol", "Petrol"),
                            ("diesel", "Diesel"),
                            ("electric", "Electric"),
                            ("hybrid", "Hybrid"),
                        ],
                        max_length=16,
                    ),
                ),
                ("engine_capacity", models.CharField(blank=True, default="", max_length=32)),
                (
                    "transmission",
                    models.CharField(
                        choices=[("manual", "Manual"), ("automatic", "Automatic"), ("cvt", "CVT")],
                        max_length=16,
                    ),
                ),
                ("seating_capacity", models.PositiveSmallIntegerField(default=5)),
                ("color", models.CharField(blank=True, default="", max_length=40)),
                ("features", models.JSONField(blank=True, default=list)),
                (
                    "vehicle_category",
                    models.CharField(
                        choices=[
                            ("four_wheeler", "Four wheeler"),
                            ("two_wheeler", "Two wheeler"),
                            ("commercial", "Commercial"),
                        ],
                        default="four_wheeler",
                        max_length=16,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["manufacturer", "model", "-year"],
                "indexes": [
                    models.Index(fields=["manufacturer", "model"], name="vehicle_spec_make_model_idx"),
                    models.Index(fields=["vehicle_category"], name="vehicle_spec_category_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Vehicle",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("rental_rate", models.DecimalField(decimal_places=2, help_text="Daily rental rate.", max_digits=10)),
                ("availability", models.BooleanField(default=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("available", "Available"),
                            ("rented", "Rented"),
                            ("maintenance", "Maintenance"),
                            ("out_of_service", "Out of service"),
                            ("reserved", "Reserved"),
                            ("damaged", "Damaged"),
                        ],
                        default="available",
                        max_length=16,
                    ),
                ),
                ("license_plate", models.CharField(max_length=20, unique=True)),
                ("mileage", models.PositiveIntegerField(default=0)),
                ("fuel_level", models.PositiveSmallIntegerField(default=100, help_text="Percent full.")),
                ("condition_rating", models.PositiveSmallIntegerField(default=10, help_text="1 (poor) to 10.")),
                ("notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "location",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="vehicles",
                        to="locations.location",
                    ),
                ),
                (
                    "specification",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="vehicles",
                        to="vehicles.vehiclespecification",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["location", "availability"], name="vehicle_location_avail_idx"),
                    models.Index(fields=["status"], name="vehicle_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="VehicleImage",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("key", models.CharField(max_length=512)),
                ("url", models.URLField(max_length=1024)),
                ("alt", models.CharField(blank=True, default="", max_length=255)),
                ("caption", models.CharField(blank=True, default="", max_length=255)),
                ("is_primary", models.BooleanField(default=False)),
                ("display_order", models.PositiveIntegerField(default=0)),
                ("content_type", models.CharField(blank=True, default="", max_length=64)),
                ("size", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "vehicle",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="images",
                        to="vehicles.vehicle",
                    ),
                ),
            ],
            options={
                "ordering": ["-is_primary", "display_order", "id"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("is_primary", True)),
                        fields=("vehicle",),
                        name="vehicle_single_primary_image",
                    )
                ],
            },
        ),
    ]
