from __future__ import annotations

import logging
from typing import Optional

from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from django.utils.text import slugify
from rest_framework import serializers
from rest_framework.exceptions import AuthenticationFailed
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from core.phone import normalize_phone

User = get_user_model()

logger = logging.getLogger(__name__)


def _clean_phone(value: Optional[str]) -> str:
    if value in (None, ""):
        return ""
    return normalize_phone(value)


class ProfileSerializer(serializers.ModelSerializer):
    """Self-service profile; role and identifiers are read-only."""

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "email",
            "first_name",
            "last_name",
            "contact_phone",
            "address",
            "role",
            "date_joined",
        ]
        read_only_fields = ("id", "username", "email", "role", "date_joined")

    def validate_contact_phone(self, value: Optional[str]) -> str:
        return _clean_phone(value)


class AdminUserSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "email",
            "first_name",
            "last_name",
            "contact_phone",
            "address",
            "role",
            "is_active",
            "date_joined",
            "updated_at",
        ]
        read_only_fields = ("id", "date_joined", "updated_at")

    def validate_contact_phone(self, value: Optional[str]) -> str:
        return _clean_phone(value)


class RoleUpdateSerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=User.Role.choices)


class SignupSerializer(serializers.ModelSerializer):
    """Public signup; new accounts always get the ``user`` role."""

    password = serializers.CharField(write_only=True)
    username = serializers.CharField(required=False, allow_blank=True)

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "email",
            "password",
            "first_name",
            "last_name",
            "contact_phone",
            "address",
            "role",
        ]
        read_only_fields = ("id", "role")
        extra_kwargs = {"password": {"write_only": True}}

    def validate_password(self, value: str) -> str:
        validate_password(value)
        return value

    def validate_email(self, value: str) -> str:
        email = value.strip().lower()
        if User.objects.filter(email__iexact=email).exists():
            raise serializers.ValidationError("A user with this email already exists.")
        return email

    def validate_contact_phone(self, value: Optional[str]) -> str:
        return _clean_phone(value)

    def create(self, validated_data: dict) -> User:
        password = validated_data.pop("password")
        if not validated_data.get("username"):
            validated_data["username"] = self._generate_username(validated_data["email"])
        elif User.objects.filter(username__iexact=validated_data["username"]).exists():
            raise serializers.ValidationError({"username": "This username is taken."})
        user = User.objects.create_user(password=password, **validated_data)
        logger.info("users: account created", extra={"user_id": user.id})
        return user

    @staticmethod
    def _generate_username(email: str) -> str:
        base = slugify(email.split("@", 1)[0]) or "user"
        candidate = base
        suffix = 1
        while User.objects.filter(username__iexact=candidate).exists():
            suffix += 1
            candidate = f"{base}{suffix}"
        return candidate


class FlexibleTokenObtainPairSerializer(TokenObtainPairSerializer):
    """
    Accepts email or username for authentication and returns a JWT pair.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields["identifier"] = serializers.CharField(required=False, allow_blank=True)
        if self.username_field in self.fields:
            self.fields[self.username_field].required = False

    def validate(self, attrs: dict) -> dict:
        identifier = attrs.get("identifier") or attrs.get(self.username_field) or ""
        password = attrs.get("password")
        if not identifier or not password:
            raise serializers.ValidationError(
                {"non_field_errors": ["Provide credentials to log in."]}
            )

        user = self._resolve_user(identifier)
        if not user:
            raise AuthenticationFailed(self.error_messages["no_active_account"])

        # TokenObtainPairSerializer expects the username field in attrs.
        attrs[self.username_field] = user.get_username()
        data = super().validate(attrs)
        data["user"] = ProfileSerializer(self.user).data
        return data

    @staticmethod
    def _resolve_user(identifier: str) -> Optional[User]:
        value = identifier.strip()
        if not value:
            return None
        if "@" in value:
            return User.objects.filter(email__iexact=value).first()
        return User.objects.filter(username__iexact=value).first()
