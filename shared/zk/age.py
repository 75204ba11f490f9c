"""
Age Check
=========

Calendar-based age comparison.

Version: 0.1.0
"""

from datetime import UTC, date, datetime


def age_on(date_of_birth: date, today: date) -> int:
    """
    Whole years elapsed between ``date_of_birth`` and ``today``.

    A birthday on 29 February is reached on 1 March in non-leap years.
    """
    had_birthday = (today.month, today.day) >= (date_of_birth.month, date_of_birth.day)
    return today.year - date_of_birth.year - (0 if had_birthday else 1)


def age_check(
    date_of_birth: date,
    threshold_years: int,
    today: date | None = None,
) -> bool:
    """
    Check that a person born on ``date_of_birth`` is at least ``threshold_years`` old.

    Args:
        date_of_birth: Date of birth
        threshold_years: Minimum age in whole years
        today: Reference date (defaults to the current UTC date)

    Returns:
        bool: True if the age threshold is met. Future birth dates never pass.
    """
    if isinstance(date_of_birth, datetime):
        date_of_birth = date_of_birth.date()
    today = today or datetime.now(UTC).date()
    if date_of_birth > today:
        return False
    return age_on(date_of_birth, today) >= threshold_years
