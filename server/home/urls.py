from django.urls import include, path
from rest_framework import routers

from .views import (
    CurrentUserView,
    DebugRoleView,
    HomeRouteView,
    HomeView,
    RoleCheckView,
    UserViewSet,
)

router = routers.SimpleRouter()
router.register(r"users", UserViewSet, basename="user")

urlpatterns = [
    path("", HomeView.as_view(), name="home"),
    path("api/home/", HomeRouteView.as_view(), name="home-route"),
    path("api/me/", CurrentUserView.as_view(), name="current-user"),
    path("api/me/debug-role/", DebugRoleView.as_view(), name="debug-role"),
    path("api/me/authorize/", RoleCheckView.as_view(), name="role-check"),
    path("api/v1/", include(router.urls)),
]
