# src/apps/accounts/models.py
from __future__ import annotations

from decimal import Decimal

from django.contrib.auth.base_user import AbstractBaseUser, BaseUserManager
from django.contrib.auth.models import PermissionsMixin
from django.db import models
from django.db.models import Q

from apps.rewards.leveling import LevelInfo, calculate_level, level_info


class UserRole(models.TextChoices):
    ADMIN = "ADMIN", "Admin"
    EDITOR = "EDITOR", "Editor"
    PLAYER = "PLAYER", "Player"


# Roles allowed to create quests, approve/reject completions and manage skills/store
MODERATOR_ROLES = frozenset({UserRole.ADMIN, UserRole.EDITOR})


class UserManager(BaseUserManager):
    """
    UserManager for email login.

    NOTE:
    - Sign-in itself (Google OAuth / JWT) lives outside this project;
      users arrive here already identified by email.
    """

    def create_user(self, email: str, password: str | None = None, **extra_fields):
        if not email:
            raise ValueError("email is required")

        # case differences must not create duplicate accounts
        email = self.normalize_email(email).lower()

        user = self.model(email=email, **extra_fields)

        # OAuth-only users never get a usable password
        if password is None:
            user.set_unusable_password()
        else:
            user.set_password(password)

        user.save(using=self._db)
        return user

    def create_superuser(self, email: str, password: str | None = None, **extra_fields):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        extra_fields.setdefault("is_active", True)
        extra_fields.setdefault("role", UserRole.ADMIN)

        if extra_fields.get("is_staff") is not True:
            raise ValueError("Superuser must have is_staff=True.")
        if extra_fields.get("is_superuser") is not True:
            raise ValueError("Superuser must have is_superuser=True.")
        if password is None:
            raise ValueError("Superuser must have a password.")

        return self.create_user(email=email, password=password, **extra_fields)


class User(AbstractBaseUser, PermissionsMixin):
    """
    A household member.

    Ledger fields:
    - bounty_balance: spendable points; credited on quest approval, debited on store purchase.
      A CHECK constraint keeps it >= 0 even if a service bug tries otherwise.
    - experience: cumulative, only ever incremented (RewardLedger).
      level is always derived from it and never stored.
    """

    email = models.EmailField(unique=True)
    display_name = models.CharField(max_length=30)

    role = models.CharField(max_length=10, choices=UserRole.choices, default=UserRole.PLAYER)

    bounty_balance = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    experience = models.PositiveIntegerField(default=0)

    # Character sheet (shown on the profile; no game rules attached)
    character_name = models.CharField(max_length=50, blank=True)
    character_class = models.CharField(max_length=50, blank=True)
    character_bio = models.TextField(blank=True)
    avatar_url = models.URLField(blank=True)
    preferred_pronouns = models.CharField(max_length=30, blank=True)
    favorite_color = models.CharField(max_length=20, blank=True)

    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = UserManager()

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = ["display_name"]

    class Meta:
        db_table = "accounts_user"
        indexes = [
            models.Index(fields=["email"]),
            models.Index(fields=["role"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(bounty_balance__gte=0),
                name="ck_user_bounty_balance_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.display_name} <{self.email}>"

    @property
    def is_moderator(self) -> bool:
        return self.role in MODERATOR_ROLES

    @property
    def level(self) -> int:
        return calculate_level(self.experience)

    @property
    def level_info(self) -> LevelInfo:
        return level_info(self.experience)
