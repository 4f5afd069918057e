import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("vehicles", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="vehicle",
            name="last_cleaned_at",
            field=models.DateTimeField(blank=True, null=True),
        ),
        migrations.CreateModel(
            name="MaintenanceRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "maintenance_type",
                    models.CharField(
                        choices=[
                            ("routine", "Routine"),
                            ("repair", "Repair"),
                            ("inspection", "Inspection"),
                            ("cleaning", "Cleaning"),
                            ("emergency", "Emergency"),
                        ],
                        default="routine",
                        max_length=16,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("scheduled", "Scheduled"),
                            ("in_progress", "In progress"),
                            ("completed", "Completed"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="scheduled",
                        max_length=16,
                    ),
                ),
                ("description", models.TextField()),
                ("cost", models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ("maintenance_date", models.DateField()),
                ("service_provider", models.CharField(blank=True, default="", max_length=255)),
                ("mileage_at_service", models.PositiveIntegerField(blank=True, null=True)),
                ("next_service_mileage", models.PositiveIntegerField(blank=True, null=True)),
                ("notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "vehicle",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="maintenance_records",
                        to="vehicles.vehicle",
                    ),
                ),
            ],
            options={
                "ordering": ["-maintenance_date", "-id"],
                "indexes": [
                    models.Index(fields=["vehicle", "status"], name="maintenance_vehicle_status_idx"),
                ],
            },
        ),
    ]
