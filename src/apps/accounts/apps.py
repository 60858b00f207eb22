# src/apps/accounts/apps.py
from django.apps import AppConfig


class AccountsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.accounts"
    # AUTH_USER_MODEL = "accounts.User" depends on this label
    label = "accounts"
    verbose_name = "Household members"
