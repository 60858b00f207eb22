# src/config/urls.py
from django.urls import path

from apps.common.health import healthz

# Only the liveness probe is routed here; the quest board API surface
# lives with the frontend service layer and calls the app services directly.
urlpatterns = [
    path("healthz/", healthz, name="healthz"),
]
