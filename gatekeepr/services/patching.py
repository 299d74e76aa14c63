"""Partial-update helper shared by the CRUD services."""

from typing import Any

from pydantic import BaseModel

from gatekeepr.core.exceptions import ValidationError


def apply_patch(entity: Any, patch: BaseModel) -> tuple[dict, dict]:
    """Copy the explicitly-set fields of ``patch`` onto ``entity``.

    Returns ``(old, new)`` snapshots of the touched fields for auditing.

    Raises:
        ValidationError: If the patch sets no field at all, or sets a
            non-nullable column to null.
    """
    changes = patch.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")

    columns = type(entity).__table__.columns
    for field, value in changes.items():
        if value is None and not columns[field].nullable:
            raise ValidationError(f"{field} cannot be null")

    old, new = {}, {}
    for field, value in changes.items():
        old[field] = getattr(entity, field)
        setattr(entity, field, value)
        new[field] = value
    return old, new
