"""Shape checks for extraction bundles and the sanitiser that acts on them.

Problems are returned as data (``ValidationIssue``), never raised.
Errors cause the sanitiser to drop the field; warnings are kept for a
human reviewer and never block anything.  Absent fields are never checked.
"""

import copy
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from urllib.parse import urlparse

from app.pipeline.record import DECIMAL_FIELDS, ExtractionBundle

logger = logging.getLogger(__name__)


@dataclass
class ValidationIssue:
    field: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


@dataclass
class ValidationResult:
    valid: bool = True
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


# ═══════════════════════════════════════════════════
# FIELD VALIDATORS
# ═══════════════════════════════════════════════════

_EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
_PHONE_STRIP_RE = re.compile(r'[\s\-().]')
_SA_PHONE_RE = re.compile(r'^(\+?27|0)[0-9]{9}$')
_INTL_PHONE_RE = re.compile(r'^\+[1-9][0-9]{6,14}$')
_SA_ID_RE = re.compile(r'^\d{13}$')

_DATE_FORMATS = [
    "%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y", "%d.%m.%Y",
    "%Y/%m/%d", "%m/%d/%Y", "%d %b %Y", "%d %B %Y",
    "%B %d, %Y", "%b %d, %Y",
]


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email.strip()))


def is_valid_phone(phone: str) -> bool:
    """South-African national/international or generic E.164-ish numbers."""
    cleaned = _PHONE_STRIP_RE.sub("", phone)
    return bool(_SA_PHONE_RE.match(cleaned) or _INTL_PHONE_RE.match(cleaned))


def is_valid_sa_id(id_number: str) -> bool:
    """13-digit South African ID with a valid Luhn check digit.

    Digits at odd positions (0-based) are doubled; the check digit is
    ``(10 - sum % 10) % 10``.
    """
    cleaned = re.sub(r'\s', "", id_number or "")
    if not _SA_ID_RE.match(cleaned):
        return False
    total = 0
    for i, ch in enumerate(cleaned[:12]):
        digit = int(ch)
        if i % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    check_digit = (10 - (total % 10)) % 10
    return check_digit == int(cleaned[12])


def is_valid_url(url: str) -> bool:
    candidate = url.strip()
    if not candidate.lower().startswith("http"):
        candidate = f"https://{candidate}"
    try:
        hostname = urlparse(candidate).hostname
    except ValueError:
        return False
    return bool(hostname) and "." in hostname


def is_valid_date(date_str: str) -> bool:
    text = date_str.strip()
    if not text:
        return False
    try:
        datetime.fromisoformat(text)
        return True
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            datetime.strptime(text, fmt)
            return True
        except ValueError:
            continue
    return False


def is_valid_percentage(value) -> bool:
    try:
        return 0 <= float(value) <= 100
    except (TypeError, ValueError):
        return False


# ── Field groups ──
EMAIL_FIELDS = {
    "email_address": "Invalid email format",
    "contact_person_email": "Invalid email format for contact person",
    "aml_responsible_person_email": "Invalid email format for AML responsible person",
}
PHONE_FIELDS = {
    "business_phone_work": "Work phone number format looks unusual, please verify",
    "business_phone_cell": "Cell number format looks unusual, please verify",
    "contact_person_tel_work": "Contact work number format looks unusual",
    "contact_person_tel_cell": "Contact cell format looks unusual",
}
DATE_FIELDS = {
    "license_expiry_date": "License expiry date format unclear",
    "declaration_signature_date": "Declaration date format unclear",
    "last_audit_date": "Last audit date format unclear",
}
PERCENT_FIELDS = [k for k in DECIMAL_FIELDS if k.endswith("_pct")]

_PERSON_PATH_RE = re.compile(r'^associated_persons\[(\d+)\]\.(\w+)$')


# ═══════════════════════════════════════════════════
# BUNDLE VALIDATION
# ═══════════════════════════════════════════════════

def _present_str(bundle: dict, key: str) -> str | None:
    value = bundle.get(key)
    if isinstance(value, str) and value.strip():
        return value
    return None


def validate_extraction(bundle: ExtractionBundle) -> ValidationResult:
    """Check every present field of ``bundle``; absent fields are skipped."""
    result = ValidationResult()

    for key, message in EMAIL_FIELDS.items():
        value = _present_str(bundle, key)
        if value and not is_valid_email(value):
            result.errors.append(ValidationIssue(key, message))

    for key, message in PHONE_FIELDS.items():
        value = _present_str(bundle, key)
        if value and not is_valid_phone(value):
            result.warnings.append(ValidationIssue(key, message))

    website = _present_str(bundle, "website")
    if website and not is_valid_url(website):
        result.warnings.append(ValidationIssue("website", "Website URL format looks unusual"))

    for key in PERCENT_FIELDS:
        if bundle.get(key) is not None and not is_valid_percentage(bundle[key]):
            result.errors.append(ValidationIssue(key, "Percentage must be 0-100"))

    for i, person in enumerate(bundle.get("associated_persons") or []):
        if not isinstance(person, dict):
            continue
        pct = person.get("ownership_percentage")
        if pct is not None and not is_valid_percentage(pct):
            result.errors.append(ValidationIssue(
                f"associated_persons[{i}].ownership_percentage",
                "Ownership % must be 0-100",
            ))
        email = _present_str(person, "person_email")
        if email and not is_valid_email(email):
            result.warnings.append(ValidationIssue(
                f"associated_persons[{i}].person_email",
                "Person email format looks unusual",
            ))

    for key, message in DATE_FIELDS.items():
        value = _present_str(bundle, key)
        if value and not is_valid_date(value):
            result.warnings.append(ValidationIssue(key, message))

    result.valid = not result.errors
    if result.errors:
        logger.info(
            f"Extraction validation: {len(result.errors)} error(s) "
            f"[{', '.join(e.field for e in result.errors)}], "
            f"{len(result.warnings)} warning(s)"
        )
    return result


def sanitise_extraction(bundle: ExtractionBundle, validation: ValidationResult) -> ExtractionBundle:
    """Return a copy of ``bundle`` without the fields that failed hard validation.

    Top-level errors drop the key entirely.  Indexed person errors
    (``associated_persons[i].x``) drop only ``x`` from that person; the
    person itself and its other attributes are kept.  The input bundle is
    never mutated.
    """
    sanitised: dict = dict(bundle)
    persons = None

    for issue in validation.errors:
        match = _PERSON_PATH_RE.match(issue.field)
        if match:
            if persons is None:
                persons = copy.deepcopy(sanitised.get("associated_persons") or [])
            idx, sub_field = int(match.group(1)), match.group(2)
            if idx < len(persons) and isinstance(persons[idx], dict):
                persons[idx].pop(sub_field, None)
        else:
            sanitised.pop(issue.field, None)

    if persons is not None:
        sanitised["associated_persons"] = persons
    return sanitised
