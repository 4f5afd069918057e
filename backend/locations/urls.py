from rest_framework.routers import SimpleRouter

from .api import LocationViewSet

app_name = "locations"

router = SimpleRouter()
router.register(r"", LocationViewSet, basename="location")

urlpatterns = router.urls
