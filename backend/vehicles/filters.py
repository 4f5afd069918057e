import django_filters

from .models import Vehicle


class VehicleFilter(django_filters.FilterSet):
    category = django_filters.CharFilter(field_name="specification__vehicle_category")
    manufacturer = django_filters.CharFilter(
        field_name="specification__manufacturer", lookup_expr="iexact"
    )
    fuel_type = django_filters.CharFilter(field_name="specification__fuel_type")
    transmission = django_filters.CharFilter(field_name="specification__transmission")
    min_rate = django_filters.NumberFilter(field_name="rental_rate", lookup_expr="gte")
    max_rate = django_filters.NumberFilter(field_name="rental_rate", lookup_expr="lte")

    class Meta:
        model = Vehicle
        fields = ["location", "availability", "status", "specification"]
