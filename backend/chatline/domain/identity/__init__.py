"""Accounts, authentication and relationship sets."""

from .models import Relation, User

__all__ = ["Relation", "User"]
