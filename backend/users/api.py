from __future__ import annotations

import logging

from django.contrib.auth import get_user_model
from rest_framework import generics, mixins, permissions, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework_simplejwt.views import TokenObtainPairView

from core.permissions import IsAdminOrSupport, IsAdminRole
from core.responses import EnvelopeResponseMixin, success_response

from .serializers import (
    AdminUserSerializer,
    FlexibleTokenObtainPairSerializer,
    ProfileSerializer,
    RoleUpdateSerializer,
    SignupSerializer,
)

logger = logging.getLogger(__name__)
User = get_user_model()


class SignupView(EnvelopeResponseMixin, generics.CreateAPIView):
    """Public signup endpoint."""

    queryset = User.objects.all()
    serializer_class = SignupSerializer
    permission_classes = [permissions.AllowAny]
    envelope_messages = {"create": "Account created successfully"}


class MeView(EnvelopeResponseMixin, generics.RetrieveUpdateAPIView):
    """Authenticated profile view for the current user."""

    serializer_class = ProfileSerializer
    permission_classes = [permissions.IsAuthenticated]
    envelope_messages = {"update": "Profile updated", "partial_update": "Profile updated"}

    def get_object(self):
        user = self.request.user
        self.check_object_permissions(self.request, user)
        return user


class FlexibleTokenObtainPairView(EnvelopeResponseMixin, TokenObtainPairView):
    """Login endpoint that accepts email or username as the identifier."""

    permission_classes = [permissions.AllowAny]
    serializer_class = FlexibleTokenObtainPairSerializer
    envelope_messages = {"create": "Login successful"}


class UserViewSet(
    EnvelopeResponseMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.UpdateModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    """
    Back-office user management.

    Support agents can browse accounts; changes and deletion are admin only.
    """

    queryset = User.objects.all().order_by("-date_joined")
    serializer_class = AdminUserSerializer
    filterset_fields = ["role", "is_active"]
    search_fields = ["username", "email", "first_name", "last_name", "contact_phone"]
    ordering_fields = ["date_joined", "email", "last_name"]
    lookup_value_regex = r"\d+"

    def get_permissions(self):
        if self.action in ("list", "retrieve"):
            return [IsAdminOrSupport()]
        return [IsAdminRole()]

    def perform_destroy(self, instance):
        if instance.pk == self.request.user.pk:
            raise ValidationError({"detail": "You cannot delete your own account."})
        logger.info(
            "users: account deleted",
            extra={"user_id": instance.pk, "actor_id": self.request.user.pk},
        )
        instance.delete()

    @action(detail=True, methods=["patch"], url_path="role")
    def role(self, request, pk=None):
        user = self.get_object()
        serializer = RoleUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user.role = serializer.validated_data["role"]
        user.save(update_fields=["role", "updated_at"])
        logger.info(
            "users: role changed",
            extra={"user_id": user.pk, "role": user.role, "actor_id": request.user.pk},
        )
        return success_response(AdminUserSerializer(user).data, "User role updated")
