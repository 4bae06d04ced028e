"""
schemas/group_schema.py — Marshmallow schemas for group and membership endpoints.

Validation responsibility:
  - This file: field types, string lengths, non-empty checks (including trim).
  - services/group_service.py:
      - caller must be a member / an admin (403)
      - phone normalisation (INVALID_PHONE, 422)
      - ALREADY_MEMBER / ALREADY_PENDING_MEMBER (409)
      - GROUP_NOT_FOUND (404)

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate


def _validate_non_empty_after_trim(value: str) -> None:
    """
    Raises ValidationError if the string is blank or contains only whitespace.
    Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) constraint at the API layer.
    """
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _name_field(**kwargs) -> fields.Str:
    return fields.Str(
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
        **kwargs,
    )


class MemberInputSchema(Schema):
    """
    POST /groups/:id/members

    A registered user with this phone joins directly; otherwise a pending
    member is created and name becomes required (checked in the service,
    which knows whether the phone is registered).
    """

    phone = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=32),
    )
    name = _name_field(load_default=None)


class CreateGroupSchema(Schema):
    """
    POST /groups

    name is required; members is an optional list of people to add right
    away, each identified by phone.
    """

    name = _name_field(required=True)

    members = fields.List(
        fields.Nested(MemberInputSchema),
        load_default=list,
    )


class RenameGroupSchema(Schema):
    """PATCH /groups/:id"""

    name = _name_field(required=True)
