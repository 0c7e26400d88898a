"""Case record model: the counterparty aggregate that is scored and merged into.

The in-memory ``Record`` declares every KYC DOC 011 field explicitly and
defaults each one to ``None`` (absent).  List-valued selections
(business types, licence types, metals, ...) are genuine ``list[str]``
values here; they only become JSON-array text at the persistence
boundary (``Record.to_dict`` / ``Record.from_dict``).

``ExtractionBundle`` is the partial record produced by the extraction
collaborator: a ``TypedDict(total=False)`` so that "not extracted" is a
missing key, never ``None``.
"""

from __future__ import annotations

import json
import logging
import secrets
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Literal, TypedDict

logger = logging.getLogger(__name__)

ENTITY_TYPES = ("Company", "Individual")

PERSON_ROLE_TYPES = [
    "Director", "Member", "Owner", "Shareholder", "UBO",
    "Authorised Signatory", "Other",
]


def normalise_entity_type(value: Any) -> str | None:
    """Return ``Company`` / ``Individual`` or ``None`` for anything else."""
    if isinstance(value, str) and value in ENTITY_TYPES:
        return value
    return None


# ═══════════════════════════════════════════════════
# FIELD CATALOGUE (storage kind per field)
# ═══════════════════════════════════════════════════

TEXT_FIELDS = [
    # Section A: Applicant Details
    "registered_name", "registration_or_id_number", "business_address",
    "business_phone_work", "business_phone_cell", "email_address",
    "type_of_business", "contact_person_name", "contact_person_tel_work",
    "contact_person_tel_cell", "contact_person_email", "fica_org_id",
    "website", "tax_number", "vat_number", "vat_category",
    "pep_relationship_details", "date_of_birth",
    # Section D: Financials
    "bank_name", "account_name", "account_number", "branch_code",
    "branch_name", "swift_code", "audit_company_name", "auditor_phone_work",
    "auditor_phone_cell", "last_audit_date", "source_of_funds_description",
    # Section E: Business Activity
    "business_activity_description", "license_number", "license_expiry_date",
    # Section F: Facilities & Materials
    "source_material_percentage", "source_material_country",
    "mine_name", "mine_address", "mining_permit_number",
    # Section G: AML / CFT
    "aml_law_name", "aml_regulator", "aml_responsible_person_name",
    "aml_responsible_person_phone", "aml_responsible_person_email",
    # Section H: Transaction Monitoring
    "suspicious_detection_details", "unusual_activity_details",
    "payment_last_year_description",
    # Section I: Declaration
    "declaration_signature_name", "declaration_signature_position",
    "declaration_signature_date",
]

BOOL_FIELDS = [
    "multiple_branches", "pep_related", "holds_license",
    "has_smelting_facilities", "has_manufacturing_facilities",
    "produces_retail_products", "precious_metal_association",
    "subject_to_aml_law", "has_aml_conformity_program",
    "has_anti_bribery_policy", "charged_for_anti_bribery",
    "provides_aml_training", "performs_risk_assessment",
    "suspicious_tx_reporting", "registers_precious_metal_tx",
    "monitors_unusual_activity", "structured_tx_procedures",
    "fica_processing_authorised", "popia_consent", "info_true_declaration",
    "confirms_beneficial_owner_goods", "confirms_legitimate_owners",
    "confirms_prevent_criminal_goods", "confirms_legislation_compliance",
    "confirms_no_forced_labour", "confirms_environmental_compliance",
    "confirms_no_bribery", "commits_to_oecd",
]

INT_FIELDS = ["branch_count"]

DECIMAL_FIELDS = [
    "unprocessed_recycled_kg", "jewellers_sweeps_kg", "melted_recycled_kg",
    "primary_mined_kg", "max_cash_amount", "max_eft_amount",
    "supplier_bank_pct", "supplier_company_pct", "supplier_individual_pct",
    "payment_bank_transfer_pct", "payment_cheque_pct", "payment_cash_pct",
]

ENUM_FIELDS: dict[str, tuple[str, ...]] = {
    "entity_type": ENTITY_TYPES,
    "supplier_profile": ("Bank", "Company", "Individual", "Other"),
    "payment_method_primary": ("Bank Transfer", "Cash", "Cheque", "Other"),
}

LIST_FIELDS = [
    "business_type_checkboxes", "license_types", "customer_metals",
    "metal_forms", "association_memberships", "supplier_metals",
]

SCALAR_FIELDS = (
    list(ENUM_FIELDS) + TEXT_FIELDS + BOOL_FIELDS + INT_FIELDS + DECIMAL_FIELDS
)
ALL_RECORD_FIELDS = SCALAR_FIELDS + LIST_FIELDS

PERSON_TEXT_FIELDS = [
    "person_full_name", "person_role_type", "person_nationality",
    "country_of_incorporation", "person_id_or_passport", "person_address",
    "person_designation", "person_email", "person_phone",
]
PERSON_FIELDS = PERSON_TEXT_FIELDS + ["ownership_percentage"]


# ═══════════════════════════════════════════════════
# EXTRACTION BUNDLE (partial record)
# ═══════════════════════════════════════════════════

class PersonBundle(TypedDict, total=False):
    person_full_name: str
    person_role_type: str
    person_nationality: str
    country_of_incorporation: str
    person_id_or_passport: str
    person_address: str
    ownership_percentage: float
    person_designation: str
    person_email: str
    person_phone: str


class ExtractionBundle(TypedDict, total=False):
    # Section A
    entity_type: Literal["Company", "Individual"]
    registered_name: str
    registration_or_id_number: str
    business_address: str
    business_phone_work: str
    business_phone_cell: str
    email_address: str
    type_of_business: str
    contact_person_name: str
    contact_person_tel_work: str
    contact_person_tel_cell: str
    contact_person_email: str
    fica_org_id: str
    website: str
    tax_number: str
    vat_number: str
    vat_category: str
    multiple_branches: bool
    branch_count: int
    pep_related: bool
    pep_relationship_details: str
    date_of_birth: str
    # Section D
    bank_name: str
    account_name: str
    account_number: str
    branch_code: str
    branch_name: str
    swift_code: str
    audit_company_name: str
    auditor_phone_work: str
    auditor_phone_cell: str
    last_audit_date: str
    source_of_funds_description: str
    # Section E
    business_type_checkboxes: list[str]
    business_activity_description: str
    holds_license: bool
    license_types: list[str]
    license_number: str
    license_expiry_date: str
    # Section F
    has_smelting_facilities: bool
    has_manufacturing_facilities: bool
    produces_retail_products: bool
    customer_metals: list[str]
    metal_forms: list[str]
    precious_metal_association: bool
    association_memberships: list[str]
    supplier_metals: list[str]
    source_material_percentage: str
    supplier_profile: Literal["Bank", "Company", "Individual", "Other"]
    source_material_country: str
    unprocessed_recycled_kg: float
    jewellers_sweeps_kg: float
    melted_recycled_kg: float
    primary_mined_kg: float
    mine_name: str
    mine_address: str
    mining_permit_number: str
    # Section G
    subject_to_aml_law: bool
    aml_law_name: str
    aml_regulator: str
    has_aml_conformity_program: bool
    aml_responsible_person_name: str
    aml_responsible_person_phone: str
    aml_responsible_person_email: str
    has_anti_bribery_policy: bool
    charged_for_anti_bribery: bool
    provides_aml_training: bool
    # Section H
    performs_risk_assessment: bool
    suspicious_tx_reporting: bool
    suspicious_detection_details: str
    registers_precious_metal_tx: bool
    monitors_unusual_activity: bool
    unusual_activity_details: str
    structured_tx_procedures: bool
    max_cash_amount: float
    max_eft_amount: float
    supplier_bank_pct: float
    supplier_company_pct: float
    supplier_individual_pct: float
    payment_bank_transfer_pct: float
    payment_cheque_pct: float
    payment_cash_pct: float
    payment_method_primary: Literal["Bank Transfer", "Cash", "Cheque", "Other"]
    payment_last_year_description: str
    # Section I
    fica_processing_authorised: bool
    popia_consent: bool
    info_true_declaration: bool
    confirms_beneficial_owner_goods: bool
    confirms_legitimate_owners: bool
    confirms_prevent_criminal_goods: bool
    confirms_legislation_compliance: bool
    confirms_no_forced_labour: bool
    confirms_environmental_compliance: bool
    confirms_no_bribery: bool
    commits_to_oecd: bool
    declaration_signature_name: str
    declaration_signature_position: str
    declaration_signature_date: str
    # Associated persons (companies)
    associated_persons: list[PersonBundle]


# ═══════════════════════════════════════════════════
# PERSISTENCE ENCODING
# ═══════════════════════════════════════════════════

def encode_list(values: list[str] | None) -> str | None:
    """Encode a string list for a single text slot (JSON array text)."""
    if values is None:
        return None
    return json.dumps(list(values), ensure_ascii=False)


def decode_list(raw: Any) -> list[str] | None:
    """Inverse of ``encode_list``; also accepts a real list or legacy CSV text."""
    if raw is None:
        return None
    if isinstance(raw, list):
        return [str(v) for v in raw]
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except json.JSONDecodeError:
                logger.warning("Undecodable list slot, falling back to comma split")
            else:
                if isinstance(parsed, list):
                    return [str(v) for v in parsed]
        return [part.strip() for part in text.split(",") if part.strip()]
    return None


def _now() -> str:
    return datetime.now().isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


# ═══════════════════════════════════════════════════
# DATA CLASSES
# ═══════════════════════════════════════════════════

@dataclass
class AssociatedPerson:
    """Director, shareholder, UBO or authorised signatory of a company."""
    person_full_name: str | None = None
    person_role_type: str | None = None
    person_nationality: str | None = None
    country_of_incorporation: str | None = None
    person_id_or_passport: str | None = None
    person_address: str | None = None
    ownership_percentage: float | None = None
    person_designation: str | None = None
    person_email: str | None = None
    person_phone: str | None = None
    id: str = field(default_factory=_new_id)
    created_at: str = field(default_factory=_now)

    @classmethod
    def from_bundle(cls, bundle: PersonBundle) -> "AssociatedPerson":
        return cls(**{k: bundle[k] for k in PERSON_FIELDS if k in bundle})

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict) -> "AssociatedPerson":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class DocumentRecord:
    """An uploaded document. Scoring only looks at ``doc_type``."""
    doc_type: str
    original_name: str = ""
    storage_path: str = ""
    file_size: int = 0
    mime_type: str = ""
    status: str = "received"
    associated_person_id: str | None = None
    notes: str | None = None
    id: str = field(default_factory=_new_id)
    created_at: str = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def to_public_dict(self) -> dict:
        """Same as ``to_dict`` without the internal storage key."""
        data = self.to_dict()
        data.pop("storage_path", None)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "DocumentRecord":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class Record:
    """Counterparty aggregate: ~95 nullable fields + persons + documents."""
    # Section A: Applicant Details
    entity_type: str | None = None
    registered_name: str | None = None
    registration_or_id_number: str | None = None
    business_address: str | None = None
    business_phone_work: str | None = None
    business_phone_cell: str | None = None
    email_address: str | None = None
    type_of_business: str | None = None
    contact_person_name: str | None = None
    contact_person_tel_work: str | None = None
    contact_person_tel_cell: str | None = None
    contact_person_email: str | None = None
    fica_org_id: str | None = None
    website: str | None = None
    tax_number: str | None = None
    vat_number: str | None = None
    vat_category: str | None = None
    multiple_branches: bool | None = None
    branch_count: int | None = None
    pep_related: bool | None = None
    pep_relationship_details: str | None = None
    date_of_birth: str | None = None          # ISO date, set only via confirmed enrichment or edit
    # Section D: Financials
    bank_name: str | None = None
    account_name: str | None = None
    account_number: str | None = None
    branch_code: str | None = None
    branch_name: str | None = None
    swift_code: str | None = None
    audit_company_name: str | None = None
    auditor_phone_work: str | None = None
    auditor_phone_cell: str | None = None
    last_audit_date: str | None = None
    source_of_funds_description: str | None = None
    # Section E: Business Activity
    business_type_checkboxes: list[str] | None = None
    business_activity_description: str | None = None
    holds_license: bool | None = None
    license_types: list[str] | None = None
    license_number: str | None = None
    license_expiry_date: str | None = None
    # Section F: Facilities & Materials
    has_smelting_facilities: bool | None = None
    has_manufacturing_facilities: bool | None = None
    produces_retail_products: bool | None = None
    customer_metals: list[str] | None = None
    metal_forms: list[str] | None = None
    precious_metal_association: bool | None = None
    association_memberships: list[str] | None = None
    supplier_metals: list[str] | None = None
    source_material_percentage: str | None = None
    supplier_profile: str | None = None
    source_material_country: str | None = None
    unprocessed_recycled_kg: float | None = None
    jewellers_sweeps_kg: float | None = None
    melted_recycled_kg: float | None = None
    primary_mined_kg: float | None = None
    mine_name: str | None = None
    mine_address: str | None = None
    mining_permit_number: str | None = None
    # Section G: AML / CFT
    subject_to_aml_law: bool | None = None
    aml_law_name: str | None = None
    aml_regulator: str | None = None
    has_aml_conformity_program: bool | None = None
    aml_responsible_person_name: str | None = None
    aml_responsible_person_phone: str | None = None
    aml_responsible_person_email: str | None = None
    has_anti_bribery_policy: bool | None = None
    charged_for_anti_bribery: bool | None = None
    provides_aml_training: bool | None = None
    # Section H: Transaction Monitoring
    performs_risk_assessment: bool | None = None
    suspicious_tx_reporting: bool | None = None
    suspicious_detection_details: str | None = None
    registers_precious_metal_tx: bool | None = None
    monitors_unusual_activity: bool | None = None
    unusual_activity_details: str | None = None
    structured_tx_procedures: bool | None = None
    max_cash_amount: float | None = None
    max_eft_amount: float | None = None
    supplier_bank_pct: float | None = None
    supplier_company_pct: float | None = None
    supplier_individual_pct: float | None = None
    payment_bank_transfer_pct: float | None = None
    payment_cheque_pct: float | None = None
    payment_cash_pct: float | None = None
    payment_method_primary: str | None = None
    payment_last_year_description: str | None = None
    # Section I: Declaration & Consent
    fica_processing_authorised: bool | None = None
    popia_consent: bool | None = None
    info_true_declaration: bool | None = None
    confirms_beneficial_owner_goods: bool | None = None
    confirms_legitimate_owners: bool | None = None
    confirms_prevent_criminal_goods: bool | None = None
    confirms_legislation_compliance: bool | None = None
    confirms_no_forced_labour: bool | None = None
    confirms_environmental_compliance: bool | None = None
    confirms_no_bribery: bool | None = None
    commits_to_oecd: bool | None = None
    declaration_signature_name: str | None = None
    declaration_signature_position: str | None = None
    declaration_signature_date: str | None = None
    # Sub-entities
    associated_persons: list[AssociatedPerson] = field(default_factory=list)
    documents: list[DocumentRecord] = field(default_factory=list)

    def get(self, key: str) -> Any:
        return getattr(self, key, None)

    @property
    def is_company(self) -> bool:
        return normalise_entity_type(self.entity_type) == "Company"

    def to_dict(self) -> dict:
        """Persistence form: list fields become JSON-array text."""
        data: dict[str, Any] = {}
        for key in SCALAR_FIELDS:
            data[key] = getattr(self, key)
        for key in LIST_FIELDS:
            data[key] = encode_list(getattr(self, key))
        data["associated_persons"] = [p.to_dict() for p in self.associated_persons]
        data["documents"] = [d.to_dict() for d in self.documents]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Record":
        record = cls()
        for key in SCALAR_FIELDS:
            if key in data:
                setattr(record, key, data[key])
        for key in LIST_FIELDS:
            if key in data:
                setattr(record, key, decode_list(data[key]))
        record.entity_type = normalise_entity_type(record.entity_type)
        record.associated_persons = [
            AssociatedPerson.from_dict(p) for p in data.get("associated_persons") or []
        ]
        record.documents = [
            DocumentRecord.from_dict(d) for d in data.get("documents") or []
        ]
        return record


@dataclass
class PendingExtraction:
    """Unconfirmed field bundle awaiting a yes/no from the user.

    ``kind`` is ``document`` (fields read from an upload) or
    ``enrichment`` (fields derived from an ID number).  ``status`` moves
    pending → confirmed | rejected exactly once.
    """
    kind: str
    fields: dict
    confirmation_message: str
    source_name: str = ""
    document_id: str | None = None
    status: str = "pending"
    id: str = field(default_factory=_new_id)
    created_at: str = field(default_factory=_now)
    resolved_at: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict) -> "PendingExtraction":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


class Case:
    """A single onboarding case (one counterparty, many collaborators)."""

    def __init__(self):
        self.case_id = _new_id()
        self.token = secrets.token_urlsafe(16)
        self.created_at = _now()
        self.updated_at = self.created_at
        self.status = "in_progress"
        self.mandatory_percent = 0
        self.docs_percent = 0
        self.completion_percent = 0
        self.risk_flag = False
        self.submitted_to_compliance = False
        self.submitted_at: str | None = None
        self.record = Record()
        self.pending_extractions: list[PendingExtraction] = []
        self.messages: list[dict] = []

    @property
    def entity_type(self) -> str | None:
        return normalise_entity_type(self.record.entity_type)

    def add_message(self, role: str, content: str, metadata: dict | None = None) -> dict:
        entry = {"role": role, "content": content, "timestamp": _now()}
        if metadata:
            entry["metadata"] = metadata
        self.messages.append(entry)
        return entry

    def oldest_pending(self) -> PendingExtraction | None:
        pending = [p for p in self.pending_extractions if p.is_pending]
        if not pending:
            return None
        return min(pending, key=lambda p: p.created_at)

    def find_document(self, doc_id: str) -> DocumentRecord | None:
        for doc in self.record.documents:
            if doc.id == doc_id:
                return doc
        return None

    def touch(self):
        self.updated_at = _now()

    def to_dict(self) -> dict:
        return {
            "case_id": self.case_id,
            "token": self.token,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "status": self.status,
            "mandatory_percent": self.mandatory_percent,
            "docs_percent": self.docs_percent,
            "completion_percent": self.completion_percent,
            "risk_flag": self.risk_flag,
            "submitted_to_compliance": self.submitted_to_compliance,
            "submitted_at": self.submitted_at,
            "record": self.record.to_dict(),
            "pending_extractions": [p.to_dict() for p in self.pending_extractions],
            "messages": self.messages,
        }

    # Only these plain fields can be loaded from disk; prevents setattr injection
    _LOADABLE_FIELDS = frozenset({
        "case_id", "token", "created_at", "updated_at", "status",
        "mandatory_percent", "docs_percent", "completion_percent",
        "risk_flag", "submitted_to_compliance", "submitted_at", "messages",
    })

    @classmethod
    def from_dict(cls, data: dict) -> "Case":
        case = cls()
        for key, value in data.items():
            if key in cls._LOADABLE_FIELDS:
                setattr(case, key, value)
            elif key not in ("record", "pending_extractions"):
                logger.warning(f"Case {data.get('case_id')}: ignoring unknown field '{key}'")
        case.record = Record.from_dict(data.get("record") or {})
        case.pending_extractions = [
            PendingExtraction.from_dict(p) for p in data.get("pending_extractions") or []
        ]
        return case
