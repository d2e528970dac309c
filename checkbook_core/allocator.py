"""
Reference Allocator Module

Check references are the checkbook serie followed by a zero padded seven
digit number, e.g. ``AA0000001``. The allocator suggests the first unused
number of a range and validates references submitted against a checkbook.

Suggestions are advisory and taken without any lock: two callers may get
the same suggestion, and the reservation plus the check primary key decide
which one wins.
"""

from typing import Optional, Set

from .storage import StorageInterface
from .errors import ValidationError, NotFoundError, CapacityError
from .models import Checkbook, CHECKBOOKS_TABLE, CHECKS_TABLE
from .logging_config import get_logger


REFERENCE_DIGITS = 7

logger = get_logger("checkbook.allocator")


def format_reference(serie: str, number: int) -> str:
    """Build the reference for a number of a serie"""
    return f"{serie.upper()}{number:0{REFERENCE_DIGITS}d}"


def parse_reference(reference: str, serie: str) -> int:
    """
    Extract the number of a reference belonging to a serie

    Raises:
        ValidationError: Wrong length, foreign serie or non digit suffix
    """
    reference = reference or ""
    expected_length = len(serie) + REFERENCE_DIGITS
    if len(reference) != expected_length:
        raise ValidationError(
            f"Reference must be {expected_length} characters long",
            {"reference": reference}
        )
    prefix, suffix = reference[:len(serie)], reference[len(serie):]
    if prefix.upper() != serie.upper():
        raise ValidationError(
            f"Reference must start with serie {serie.upper()}",
            {"reference": reference, "serie": serie}
        )
    if not (suffix.isascii() and suffix.isdigit()):
        raise ValidationError(
            "Reference must end with digits only",
            {"reference": reference}
        )
    return int(suffix)


class ReferenceAllocator:
    """Computes and validates references inside checkbook ranges"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def _load_checkbook(self, checkbook_id: str) -> Checkbook:
        data = self.storage.load(CHECKBOOKS_TABLE, checkbook_id)
        if not data:
            raise NotFoundError("checkbook", checkbook_id)
        return Checkbook.from_dict(data)

    def used_numbers(self, checkbook: Checkbook) -> Set[int]:
        """Numbers already taken by checks attached to the checkbook"""
        used = set()
        for data in self.storage.find(CHECKS_TABLE, {"checkbook_id": checkbook.id}):
            number = self._number_of(data["id"], checkbook.serie)
            if number is not None:
                used.add(number)
        return used

    @staticmethod
    def _number_of(reference: str, serie: str) -> Optional[int]:
        try:
            return parse_reference(reference, serie)
        except ValidationError:
            return None

    def suggest_next(self, checkbook_id: str) -> str:
        """
        Suggest the first free reference of a checkbook

        Args:
            checkbook_id: Checkbook to scan

        Returns:
            Reference string for the lowest unused number

        Raises:
            NotFoundError: Checkbook does not exist
            CapacityError: Every number of the range is taken
        """
        checkbook = self._load_checkbook(checkbook_id)
        if checkbook.issued_count >= checkbook.capacity:
            raise CapacityError(checkbook.id)

        used = self.used_numbers(checkbook)
        number = checkbook.start_number
        while number in used:
            number += 1
        if number > checkbook.end_number:
            raise CapacityError(checkbook.id)

        reference = format_reference(checkbook.serie, number)
        logger.debug(f"Suggested {reference} for checkbook {checkbook.id}")
        return reference

    def validate_reference(self, reference: str, checkbook: Checkbook) -> int:
        """
        Check that a reference belongs to a checkbook's range

        Returns:
            The numeric part of the reference
        """
        number = parse_reference(reference, checkbook.serie)
        if number < checkbook.start_number or number > checkbook.end_number:
            raise ValidationError(
                f"Reference number {number} is outside the checkbook range "
                f"{checkbook.start_number}-{checkbook.end_number}",
                {"reference": reference, "checkbook_id": checkbook.id}
            )
        return number
