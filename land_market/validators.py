"""
Input validation — collect EVERY problem, never stop at the first.

Each validator function:
  - Takes raw input
  - Returns a list of FieldViolation objects (empty = all clear)
  - Is independently testable

``validate_land`` and ``validate_user`` run every relevant check and
aggregate findings so the UI can show all problems at once.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

from .models import MAX_IMAGES, FieldViolation, LandInput, ListingFiles, Role

# ─── Constants ───────────────────────────────────────────────────────

DOCUMENT_CONTENT_TYPES: frozenset[str] = frozenset({
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
})

# Deliberately loose: deliverability is the mail system's problem
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# ─── Orchestrators ───────────────────────────────────────────────────


def validate_land(land_input: LandInput, files: ListingFiles) -> list[FieldViolation]:
    """Run ALL listing checks and collect violations."""
    violations: list[FieldViolation] = []
    violations.extend(validate_required_text(land_input, ("title", "description", "location")))
    violations.extend(validate_positive_amount(land_input.size, "size"))
    violations.extend(validate_positive_amount(land_input.price, "price"))
    violations.extend(validate_images(files))
    violations.extend(validate_document(files))
    return violations


def validate_user(
    name: str | None,
    email: str | None,
    wallet_ref: str | None,
    role: str | None,
) -> list[FieldViolation]:
    """Run ALL account checks and collect violations."""
    violations: list[FieldViolation] = []
    if not name or not name.strip():
        violations.append(FieldViolation(field="name", message="Name is required"))
    violations.extend(validate_email(email))
    if not wallet_ref or not wallet_ref.strip():
        violations.append(FieldViolation(field="wallet_ref", message="Wallet address is required"))
    violations.extend(validate_role(role))
    return violations


# ─── Individual Validators ───────────────────────────────────────────


def validate_required_text(obj: object, fields: tuple[str, ...]) -> list[FieldViolation]:
    """Every named attribute must be a non-blank string."""
    violations: list[FieldViolation] = []
    for field in fields:
        value = getattr(obj, field, None)
        if value is None or not str(value).strip():
            violations.append(
                FieldViolation(field=field, message=f"{field.capitalize()} is required")
            )
    return violations


def validate_positive_amount(value: object, field: str) -> list[FieldViolation]:
    """Size and price must parse as finite numbers greater than zero."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return [FieldViolation(field=field, message=f"{field.capitalize()} is required")]

    amount = parse_amount(value)
    if amount is None:
        return [FieldViolation(field=field, message=f"{field.capitalize()} must be a number")]
    if amount <= 0:
        return [
            FieldViolation(
                field=field, message=f"{field.capitalize()} must be a positive number"
            )
        ]
    return []


def validate_images(files: ListingFiles) -> list[FieldViolation]:
    """Between one and MAX_IMAGES images, each an image/* upload."""
    violations: list[FieldViolation] = []
    count = len(files.images)

    if count == 0:
        violations.append(FieldViolation(field="images", message="At least one image is required"))
    elif count > MAX_IMAGES:
        violations.append(
            FieldViolation(
                field="images",
                message=f"At most {MAX_IMAGES} images are allowed, got {count}",
            )
        )

    for i, image in enumerate(files.images):
        if image.content_type and not image.content_type.startswith("image/"):
            violations.append(
                FieldViolation(
                    field=f"images[{i}]",
                    message=f"Only image files are allowed, got '{image.content_type}'",
                )
            )
    return violations


def validate_document(files: ListingFiles) -> list[FieldViolation]:
    """Exactly one ownership document, PDF or Word."""
    count = len(files.documents)
    if count == 0:
        return [FieldViolation(field="document", message="An ownership document is required")]
    if count > 1:
        return [
            FieldViolation(
                field="document", message=f"Exactly one document is allowed, got {count}"
            )
        ]

    document = files.documents[0]
    if document.content_type and document.content_type not in DOCUMENT_CONTENT_TYPES:
        return [
            FieldViolation(
                field="document",
                message=(
                    "Only PDF and Word documents are allowed, "
                    f"got '{document.content_type}'"
                ),
            )
        ]
    if not document.content:
        return [FieldViolation(field="document", message="Document is empty")]
    return []


def validate_email(email: str | None) -> list[FieldViolation]:
    if not email or not email.strip():
        return [FieldViolation(field="email", message="Email is required")]
    if not _EMAIL_RE.match(email.strip()):
        return [FieldViolation(field="email", message=f"'{email}' is not a valid email address")]
    return []


def validate_role(role: str | None) -> list[FieldViolation]:
    allowed = [r.value for r in Role]
    if role not in allowed:
        return [
            FieldViolation(
                field="role", message=f"Role must be one of {', '.join(allowed)}"
            )
        ]
    return []


# ─── Helpers ─────────────────────────────────────────────────────────


def parse_amount(value: object) -> Decimal | None:
    """Convert a submitted amount to Decimal. None if it is not a finite number.

    Floats go through ``str`` so 0.1 stays 0.1 instead of its binary expansion.
    """
    if isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip().replace(",", ""))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount
