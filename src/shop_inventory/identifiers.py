"""Product identifier helpers.

Products carry two identifiers: a *common ID* shared by every physical unit
of the same catalog product (``CAM-1001``) and a *unique ID* tagging a single
unit (``CAM-1001-7QX2``). This module formats, validates and generates both.

Everything here is pure apart from :class:`IdentifierManager`, which holds a
reference to the session's set of unique IDs already in use. The set is owned
by whoever constructs the manager (normally the runtime context) and is
rebuilt from the loaded product list rather than persisted on its own.
Validation failures are returned as :class:`ValidationResult` values; only
generation exhaustion and invalid generator input raise.
"""

from __future__ import annotations

import random
import re
import string
from dataclasses import dataclass
from typing import Iterable, Optional, Set

from . import log
from .constants import MAX_COMMON_ID_LENGTH, MAX_GENERATION_ATTEMPTS, MAX_ID_LENGTH, UNIQUE_SUFFIX_LENGTH


COMMON_ID_PATTERN = re.compile(r"^[A-Za-z0-9]+(?:-[A-Za-z0-9]+)*$")
UNIQUE_ID_PATTERN = re.compile(r"^[A-Za-z0-9]+(?:-[A-Za-z0-9]+)+$")
_SEPARATOR_RUN = re.compile(r"[\s_\-]+")
SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


class UniqueIdExhaustedError(RuntimeError):
    """Raised when no free unique ID could be generated within the allowed attempts."""


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of an identifier validation, suitable for inline feedback."""

    is_valid: bool
    message: str
    is_duplicate: bool = False


def _normalize(value: str) -> str:
    return _SEPARATOR_RUN.sub("-", value.strip().upper()).strip("-")


def format_common_id(value: str) -> str:
    """Return the canonical representation of a common ID.

    Upper-cases the value and collapses whitespace, underscores and repeated
    hyphens into single ``-`` separators. Formatting an already formatted value
    returns it unchanged.
    """

    return _normalize(value)


def format_unique_id(value: str) -> str:
    """Return the canonical representation of a unique ID."""

    return _normalize(value)


def validate_common_id(value: str) -> ValidationResult:
    """Check that ``value`` is a usable common ID.

    Args:
        value (str): Raw input as typed by the operator.

    Returns:
        ValidationResult: ``is_valid`` is ``False`` for empty input, input
            longer than ``MAX_COMMON_ID_LENGTH`` or anything that is not an
            alphanumeric token optionally segmented by ``-``.
    """

    candidate = value.strip()
    if not candidate:
        return ValidationResult(False, "Common ID is required")
    if len(candidate) > MAX_COMMON_ID_LENGTH:
        return ValidationResult(False, f"Common ID must be at most {MAX_COMMON_ID_LENGTH} characters")
    if not COMMON_ID_PATTERN.match(candidate):
        return ValidationResult(
            False,
            "Common ID may only contain letters and digits separated by '-' (e.g. CAM-1001)",
        )
    return ValidationResult(True, "Valid Common ID")


class IdentifierManager:
    """Generate and validate unique IDs against a session-scoped used-ID set.

    The ``used_ids`` set is kept by reference, so mutations made through the
    manager are visible to the owner and vice versa. IDs are stored in their
    formatted form.
    """

    def __init__(self, used_ids: Optional[Set[str]] = None, *, rng: Optional[random.Random] = None) -> None:
        self.used_ids: Set[str] = used_ids if used_ids is not None else set()
        self._rng = rng if rng is not None else random.Random()

    @classmethod
    def from_products(cls, products: Iterable[object], *, rng: Optional[random.Random] = None) -> "IdentifierManager":
        """Rebuild the used-ID set from whatever product list is loaded."""

        used: Set[str] = set()
        for product in products:
            unique_id = getattr(product, "unique_id", None)
            if unique_id and str(unique_id).strip():
                used.add(format_unique_id(str(unique_id)))
        log.debug("Rebuilt used unique ID set with %d entries", len(used))
        return cls(used, rng=rng)

    def is_used(self, unique_id: str) -> bool:
        return format_unique_id(unique_id) in self.used_ids

    def add_used_unique_id(self, unique_id: str) -> None:
        formatted = format_unique_id(unique_id)
        if formatted:
            self.used_ids.add(formatted)

    def remove_used_unique_id(self, unique_id: str) -> None:
        self.used_ids.discard(format_unique_id(unique_id))

    def generate_unique_id(self, common_id: str) -> str:
        """Derive an unused unit-level ID from ``common_id``.

        The result is ``{COMMON-ID}-{TOKEN}`` with a random token of
        ``UNIQUE_SUFFIX_LENGTH`` characters. The generated ID is not registered;
        callers add it to the used set when the product is saved.

        Raises:
            ValueError: If ``common_id`` fails :func:`validate_common_id`.
            UniqueIdExhaustedError: If ``MAX_GENERATION_ATTEMPTS`` candidates
                all collide with the used set.
        """

        check = validate_common_id(common_id)
        if not check.is_valid:
            raise ValueError(check.message)

        prefix = format_common_id(common_id)
        for _ in range(MAX_GENERATION_ATTEMPTS):
            token = "".join(self._rng.choice(SUFFIX_ALPHABET) for _ in range(UNIQUE_SUFFIX_LENGTH))
            candidate = f"{prefix}-{token}"
            if candidate not in self.used_ids:
                return candidate

        log.warning(
            "Unable to generate a free unique ID for '%s' after %d attempts",
            prefix,
            MAX_GENERATION_ATTEMPTS,
        )
        raise UniqueIdExhaustedError(
            f"Could not generate a free unique ID for '{prefix}'; enter one manually"
        )

    def validate_unique_id(
        self,
        value: str,
        previous_value: Optional[str] = None,
        *,
        common_id: Optional[str] = None,
    ) -> ValidationResult:
        """Check that ``value`` is a well formed unique ID that is not taken.

        Args:
            value (str): Raw input as typed by the operator.
            previous_value (str | None): Unique ID the product had before the
                edit. Matching it is always allowed, even though it sits in the
                used set.
            common_id (str | None): When given, the unique ID must start with
                the formatted common ID followed by ``-``.

        Returns:
            ValidationResult: Duplicate failures have ``is_duplicate`` set.
        """

        candidate = value.strip()
        if not candidate:
            return ValidationResult(False, "Unique ID is required")
        if len(candidate) > MAX_ID_LENGTH:
            return ValidationResult(False, f"Unique ID must be at most {MAX_ID_LENGTH} characters")
        if not UNIQUE_ID_PATTERN.match(candidate):
            return ValidationResult(False, "Unique ID must look like <COMMON-ID>-<SUFFIX> (e.g. CAM-1001-A1)")

        formatted = format_unique_id(candidate)
        if common_id is not None and common_id.strip():
            prefix = format_common_id(common_id)
            if not formatted.startswith(f"{prefix}-"):
                return ValidationResult(False, f"Unique ID must start with '{prefix}-'")

        if previous_value is not None and formatted == format_unique_id(previous_value):
            return ValidationResult(True, "Unique ID unchanged")
        if formatted in self.used_ids:
            return ValidationResult(False, "Unique ID is already in use", is_duplicate=True)
        return ValidationResult(True, "Valid Unique ID")


__all__ = [
    "UniqueIdExhaustedError",
    "ValidationResult",
    "IdentifierManager",
    "format_common_id",
    "format_unique_id",
    "validate_common_id",
]
