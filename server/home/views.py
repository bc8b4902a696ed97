import logging

from django.http import HttpResponseRedirect
from django.views import View
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.exceptions import PermissionDenied, ValidationError
from rest_framework.response import Response
from rest_framework.views import APIView

from .identity import UserStore
from .models import User
from .permissions import IsAdmin
from .routing import HomeRouter
from .serializers import DebugRoleSerializer, UserAdminSerializer, UserSerializer
from .session import debug_role_switching_enabled, get_auth_session

logger = logging.getLogger(__name__)

TRUTHY = {"1", "true", "yes", "on"}


def route_home(request):
    """Clear any debug role and run the home router for ``request``."""
    session = get_auth_session(request)
    session.clear_debug_role()
    navigation = []
    router = HomeRouter(navigation.append)
    router.evaluate(session)
    return router, navigation


class HomeView(View):
    def get(self, request):
        router, navigation = route_home(request)
        return HttpResponseRedirect(navigation[-1])


class HomeRouteView(APIView):
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        router, _ = route_home(request)
        return Response({"state": router.state.value, "target": router.target})


class CurrentUserView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        session = get_auth_session(request)
        data = UserSerializer(session.effective_user).data
        data["original_role"] = session.original_user.role
        data["debug_role"] = session.debug_role
        return Response(data)


class DebugRoleView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        if not debug_role_switching_enabled():
            raise PermissionDenied("Debug role switching is disabled.")
        serializer = DebugRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        session = get_auth_session(request)
        try:
            session.switch_role(serializer.validated_data["role"])
        except ValueError as e:
            raise ValidationError(str(e))
        return Response({"debug_role": session.debug_role, "original_role": request.user.role})

    def delete(self, request):
        get_auth_session(request).switch_role(None)
        return Response(status=status.HTTP_204_NO_CONTENT)


class RoleCheckView(APIView):
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        roles = [r.strip() for r in request.query_params.get("roles", "").split(",") if r.strip()]
        require_all = request.query_params.get("require_all", "").lower() in TRUTHY
        session = get_auth_session(request)
        return Response({"authorized": session.authorize(roles, require_all=require_all)})


class UserViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.UpdateModelMixin,
    viewsets.GenericViewSet,
):
    queryset = User.objects.order_by("username")
    serializer_class = UserAdminSerializer
    permission_classes = [permissions.IsAuthenticated, IsAdmin]
    lookup_field = "uid"

    def get_queryset(self):
        qs = super().get_queryset()
        role = self.request.query_params.get("role")
        if role:
            qs = qs.filter(role=role.lower())
        return qs

    def perform_update(self, serializer):
        user = UserStore().update_user(serializer.instance.uid, serializer.validated_data)
        serializer.instance = user
        logger.info(f"User {user.username} updated by admin {self.request.user.username}")
