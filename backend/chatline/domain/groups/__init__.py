"""Group chat membership domain."""

from .models import Group  # noqa: F401
