"""South African ID number decoding and enrichment suggestions.

Layout of the 13-digit ID: ``YYMMDD SSSS C A Z``
  - YYMMDD  date of birth
  - SSSS    sequence; first digit ≥ 5 → male, < 5 → female
  - C       citizenship: 0 → SA citizen, otherwise permanent resident
  - Z       Luhn check digit (see ``validation.is_valid_sa_id``)

Suggestions are proposals only.  Nothing here writes to a record; the
onboarding flow turns a suggestion into a PendingExtraction and merges it
after the user confirms.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date

logger = logging.getLogger(__name__)

_ID_SHAPE_RE = re.compile(r'^\d{13}$')


def _clean_id(id_number: str | None) -> str | None:
    if not id_number or not isinstance(id_number, str):
        return None
    cleaned = re.sub(r'\s', "", id_number)
    return cleaned if _ID_SHAPE_RE.match(cleaned) else None


def derive_dob_from_sa_id(id_number: str, today: date | None = None) -> date | None:
    """Decode the birth date of a 13-digit ID, or ``None`` if it is not a date.

    Two-digit years up to the current year resolve to 20YY, later ones to 19YY.
    """
    cleaned = _clean_id(id_number)
    if not cleaned:
        return None

    yy = int(cleaned[0:2])
    mm = int(cleaned[2:4])
    dd = int(cleaned[4:6])
    if not 1 <= mm <= 12 or not 1 <= dd <= 31:
        return None

    current_yy = (today or date.today()).year % 100
    full_year = 2000 + yy if yy <= current_yy else 1900 + yy
    try:
        return date(full_year, mm, dd)
    except ValueError:
        # e.g. 31 April / 30 February
        return None


def derive_gender_from_sa_id(id_number: str) -> str | None:
    cleaned = _clean_id(id_number)
    if not cleaned:
        return None
    return "Male" if int(cleaned[6]) >= 5 else "Female"


def derive_citizenship_from_sa_id(id_number: str) -> str | None:
    cleaned = _clean_id(id_number)
    if not cleaned:
        return None
    return "SA Citizen" if cleaned[10] == "0" else "Permanent Resident"


def format_dob(dob: date) -> str:
    """``date(1990, 1, 4)`` → ``'4 January 1990'``."""
    return f"{dob.day} {dob.strftime('%B')} {dob.year}"


@dataclass
class EnrichmentSuggestion:
    type: str
    field: str
    derived_value: str
    confirmation_prompt: str
    pending_confirmation: bool = True
    value: str = ""                      # storage form (ISO date)
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "field": self.field,
            "derived_value": self.derived_value,
            "confirmation_prompt": self.confirmation_prompt,
            "pending_confirmation": self.pending_confirmation,
            "value": self.value,
            "details": self.details,
        }


def detect_enrichments(
    id_number: str | None,
    current_dob: str | None,
    today: date | None = None,
) -> list[EnrichmentSuggestion]:
    """Propose a date of birth derived from ``id_number``.

    Returns at most one suggestion, and none when the DOB is already
    known, the number is not 13 digits, or its date segment is invalid.
    The check digit is not required; the user confirms the DOB.
    """
    if current_dob:
        return []
    cleaned = _clean_id(id_number)
    if not cleaned:
        return []
    dob = derive_dob_from_sa_id(cleaned, today=today)
    if dob is None:
        return []

    formatted = format_dob(dob)
    suggestion = EnrichmentSuggestion(
        type="sa_id_dob",
        field="date_of_birth",
        derived_value=formatted,
        confirmation_prompt=(
            f"Based on the ID number provided, I can see your date of birth would be "
            f"**{formatted}**. Can you confirm this is correct? (Just say yes or no)"
        ),
        value=dob.isoformat(),
        details={
            "gender": derive_gender_from_sa_id(cleaned),
            "citizenship": derive_citizenship_from_sa_id(cleaned),
        },
    )
    logger.debug("Enrichment: date of birth derivable from SA ID")
    return [suggestion]
