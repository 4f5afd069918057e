from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .api import VehicleSpecificationViewSet, VehicleViewSet

router = DefaultRouter()
router.register("vehicle-specs", VehicleSpecificationViewSet, basename="vehicle-spec")
router.register("vehicles", VehicleViewSet, basename="vehicle")

urlpatterns = [
    path("", include(router.urls)),
]
