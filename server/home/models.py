import uuid

from django.contrib.auth.models import AbstractUser
from django.core.validators import MinValueValidator
from django.db import models


def generate_uid():
    return uuid.uuid4().hex


class User(AbstractUser):
    class Roles(models.TextChoices):
        REQUESTER = "requester", "Requester"
        APPROVER = "approver", "Approver"
        CARDHOLDER = "cardholder", "Cardholder"
        AUDITOR = "auditor", "Auditor"
        ADMIN = "admin", "Admin"

    uid = models.CharField(
        max_length=128,
        unique=True,
        default=generate_uid,
        help_text="Subject id issued by the identity provider.",
    )
    role = models.CharField(
        max_length=32,
        choices=Roles.choices,
        default=Roles.REQUESTER,
        help_text="Determines routing and which workflow actions the user has.",
    )
    org_id = models.CharField(max_length=64, blank=True, default="")
    approval_limit = models.DecimalField(
        max_digits=12, decimal_places=2, default=0, validators=[MinValueValidator(0)]
    )

    @property
    def name(self):
        return self.get_full_name() or self.username

    def save(self, *args, **kwargs):
        # Copies produced by get_effective_user carry a debug role.
        if getattr(self, "_role_overridden", False):
            raise ValueError("Cannot persist a user carrying a debug role override")
        super().save(*args, **kwargs)
