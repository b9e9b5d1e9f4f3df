"""Validation rules and quotas for account operations."""

from __future__ import annotations

import re

from chatline.domain.common.errors import QuotaExceeded, ValidationError
from chatline.infra import rate_limit
from chatline.settings import settings

USERNAME_REGEX = re.compile(r"^[A-Za-z0-9_.-]{3,32}$")
PHONE_REGEX = re.compile(r"^\+?[0-9][0-9 \-]{5,19}$")
PASSWORD_MIN_LEN = 6
ABOUT_MAX_LEN = 280


def normalise_email(email: str) -> str:
	return email.strip().lower()


def normalise_username(username: str) -> str:
	return username.strip()


def guard_username(username: str) -> None:
	if not USERNAME_REGEX.fullmatch(username):
		raise ValidationError("username_invalid")


def guard_password(password: str) -> None:
	if len(password) < PASSWORD_MIN_LEN:
		raise ValidationError("password_too_short")


def guard_phone(phone: str) -> None:
	if not PHONE_REGEX.fullmatch(phone):
		raise ValidationError("phone_invalid")


def guard_about(about: str) -> None:
	if len(about) > ABOUT_MAX_LEN:
		raise ValidationError("about_too_long")


async def enforce_pwreset_request_rate(email: str) -> None:
	allowed = await rate_limit.allow(
		"pwreset",
		email,
		limit=settings.password_reset_per_hour,
		window_seconds=3600,
	)
	if not allowed:
		raise QuotaExceeded("pwreset_rate")
