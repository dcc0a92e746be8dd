from django.urls import path

from modules.core.views import ActorView, health_check

urlpatterns = [
    path("health", health_check, name="health_check"),
    path("api/v1/me", ActorView.as_view(), name="actor_me"),
]
