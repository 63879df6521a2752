"""Unit tests for product identifier formatting, validation and generation."""

from __future__ import annotations

import random
from types import SimpleNamespace

import pytest

from shop_inventory import constants
from shop_inventory.identifiers import (
    IdentifierManager,
    UniqueIdExhaustedError,
    format_common_id,
    format_unique_id,
    validate_common_id,
)


class _FixedChoice:
    """Stand-in RNG that always returns the same character."""

    def __init__(self, char: str) -> None:
        self.char = char

    def choice(self, seq):
        assert self.char in seq
        return self.char


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("cam-1001", "CAM-1001"),
        ("  cam 1001  ", "CAM-1001"),
        ("cam__1001", "CAM-1001"),
        ("cam - - 1001", "CAM-1001"),
        ("-cam-1001-", "CAM-1001"),
    ],
)
def test_format_common_id_normalizes_separators(raw, expected):
    assert format_common_id(raw) == expected


@pytest.mark.parametrize("raw", ["cam 1001", "CAM__1001-a1", " x_y z "])
def test_formatting_is_idempotent(raw):
    """Formatting an already formatted ID must not change it again."""

    once = format_unique_id(raw)
    assert format_unique_id(once) == once
    assert format_common_id(format_common_id(raw)) == format_common_id(raw)


# ---------------------------------------------------------------------------
# Common ID validation
# ---------------------------------------------------------------------------


def test_validate_common_id_accepts_segmented_value():
    result = validate_common_id("CAM-1001")

    assert result.is_valid
    assert result.message == "Valid Common ID"


def test_validate_common_id_requires_value():
    result = validate_common_id("   ")

    assert not result.is_valid
    assert result.message == "Common ID is required"


def test_validate_common_id_rejects_overlong_value():
    result = validate_common_id("A" * (constants.MAX_COMMON_ID_LENGTH + 1))

    assert not result.is_valid
    assert "at most" in result.message


@pytest.mark.parametrize("raw", ["CAM--1001", "CAM_1001", "CAM 1001", "-CAM", "CAM-"])
def test_validate_common_id_rejects_bad_separators(raw):
    assert not validate_common_id(raw).is_valid


# ---------------------------------------------------------------------------
# Unique ID validation
# ---------------------------------------------------------------------------


def test_validate_unique_id_requires_two_segments():
    manager = IdentifierManager()

    result = manager.validate_unique_id("CAM1001")

    assert not result.is_valid
    assert not result.is_duplicate


def test_validate_unique_id_flags_duplicates():
    manager = IdentifierManager({"CAM-1001-A1"})

    result = manager.validate_unique_id("cam-1001-a1")

    assert not result.is_valid
    assert result.is_duplicate
    assert result.message == "Unique ID is already in use"


def test_validate_unique_id_allows_previous_value():
    """Keeping a product's own unique ID on edit is never a duplicate."""

    manager = IdentifierManager({"CAM-1001-A1"})

    result = manager.validate_unique_id("CAM-1001-A1", "cam-1001-a1")

    assert result.is_valid
    assert result.message == "Unique ID unchanged"


def test_validate_unique_id_checks_common_prefix():
    manager = IdentifierManager()

    result = manager.validate_unique_id("LENS-2002-A1", common_id="cam-1001")

    assert not result.is_valid
    assert "CAM-1001-" in result.message


def test_validate_unique_id_accepts_fresh_value():
    manager = IdentifierManager({"CAM-1001-A1"})

    result = manager.validate_unique_id("CAM-1001-B2", common_id="CAM-1001")

    assert result.is_valid
    assert result.message == "Valid Unique ID"


# ---------------------------------------------------------------------------
# Generation and the used set
# ---------------------------------------------------------------------------


def test_generate_unique_id_uses_formatted_prefix():
    manager = IdentifierManager(rng=random.Random(7))

    generated = manager.generate_unique_id("cam-1001")

    assert generated.startswith("CAM-1001-")
    suffix = generated.rsplit("-", 1)[1]
    assert len(suffix) == constants.UNIQUE_SUFFIX_LENGTH
    assert suffix.isalnum() and suffix.upper() == suffix


def test_generated_id_passes_validation_against_same_set():
    used = {"CAM-1001-AAAA"}
    manager = IdentifierManager(used, rng=random.Random(1))

    generated = manager.generate_unique_id("CAM-1001")

    assert generated not in used
    assert manager.validate_unique_id(generated, common_id="CAM-1001").is_valid


@pytest.mark.parametrize("length", [1, constants.MAX_COMMON_ID_LENGTH])
def test_generated_id_fits_unique_id_limit(length):
    common_id = "A" * length
    assert validate_common_id(common_id).is_valid
    manager = IdentifierManager(rng=random.Random(5))

    generated = manager.generate_unique_id(common_id)

    assert len(generated) <= constants.MAX_ID_LENGTH
    assert manager.validate_unique_id(generated, common_id=common_id).is_valid


def test_generate_unique_id_does_not_register_result():
    manager = IdentifierManager(rng=random.Random(3))

    generated = manager.generate_unique_id("CAM-1001")

    assert not manager.is_used(generated)


def test_generate_unique_id_raises_after_exhausting_attempts():
    manager = IdentifierManager({"CAM-1001-ZZZZ"}, rng=_FixedChoice("Z"))

    with pytest.raises(UniqueIdExhaustedError):
        manager.generate_unique_id("CAM-1001")


def test_generate_unique_id_rejects_invalid_common_id():
    manager = IdentifierManager()

    with pytest.raises(ValueError):
        manager.generate_unique_id("")
    with pytest.raises(ValueError):
        manager.generate_unique_id("A" * constants.MAX_ID_LENGTH)


def test_add_then_remove_frees_identifier():
    manager = IdentifierManager()

    manager.add_used_unique_id("cam-1001-a1")
    assert manager.validate_unique_id("CAM-1001-A1").is_duplicate

    manager.remove_used_unique_id("CAM-1001-A1")
    assert manager.validate_unique_id("CAM-1001-A1").is_valid


def test_remove_unknown_identifier_is_noop():
    manager = IdentifierManager({"CAM-1001-A1"})

    manager.remove_used_unique_id("LENS-1-X")

    assert manager.used_ids == {"CAM-1001-A1"}


def test_manager_shares_used_set_by_reference():
    used: set[str] = set()
    manager = IdentifierManager(used)

    manager.add_used_unique_id("CAM-1001-A1")

    assert used == {"CAM-1001-A1"}


def test_from_products_skips_blank_ids():
    products = [
        SimpleNamespace(unique_id="cam-1001-a1"),
        SimpleNamespace(unique_id=""),
        SimpleNamespace(unique_id=None),
        SimpleNamespace(),
    ]

    manager = IdentifierManager.from_products(products)

    assert manager.used_ids == {"CAM-1001-A1"}


@pytest.mark.parametrize("blank", ["", " ", "\t\n"])
def test_blank_input_is_rejected_by_both_validators(blank):
    manager = IdentifierManager()

    assert not validate_common_id(blank).is_valid
    assert not manager.validate_unique_id(blank).is_valid
