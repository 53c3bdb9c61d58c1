from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    CLIENT = "client"
    MANAGER = "manager"
    ADMIN = "admin"
    ROLES = [
        (CLIENT, "Client"),
        (MANAGER, "Space manager"),
        (ADMIN, "Administrator"),
    ]

    display_name = models.CharField(max_length=120, blank=True)
    role = models.CharField(max_length=20, choices=ROLES, default=CLIENT)

    @property
    def is_platform_admin(self) -> bool:
        return self.is_superuser or self.role == self.ADMIN
