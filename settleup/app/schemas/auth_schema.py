"""
schemas/auth_schema.py — Marshmallow schemas for authentication endpoints.

Validation responsibility:
  - This file: field types, lengths, formats.
  - services/auth_service.py: phone normalisation (INVALID_PHONE) and
    DUPLICATE_EMAIL / DUPLICATE_PHONE checks (require a DB lookup).

IMPORTANT: All schemas inherit from marshmallow.Schema directly.
           Do NOT use ma.Schema — it requires an active Flask app context
           and breaks unit tests.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validates, validate


class RegisterSchema(Schema):
    """
    POST /auth/register

    Field rules:
      name     : 1–100 chars, not blank
      email    : valid email format
      phone    : any common formatting; normalised by the service
      password : min 8 chars, at least one letter and one digit
    """

    name = fields.Str(
        required=True,
        validate=validate.Length(
            min=1,
            max=100,
            error="Name must be between 1 and 100 characters.",
        ),
    )

    email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
    )

    phone = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=32),
    )

    password = fields.Str(required=True, load_only=True)

    @validates("name")
    def validate_name(self, value: str, **kwargs) -> None:
        if not value.strip():
            raise ValidationError("Name must not be blank.")

    @validates("password")
    def validate_password_strength(self, value: str, **kwargs) -> None:
        if len(value) < 8:
            raise ValidationError("Password must be at least 8 characters long.")
        if not any(c.isalpha() for c in value):
            raise ValidationError("Password must contain at least one letter.")
        if not any(c.isdigit() for c in value):
            raise ValidationError("Password must contain at least one digit.")


class LoginSchema(Schema):
    """
    POST /auth/login

    identifier is an email address or a phone number. Credential
    correctness is checked in auth_service.py (INVALID_CREDENTIALS, 401).
    """

    identifier = fields.Str(required=True)
    password = fields.Str(required=True, load_only=True)
