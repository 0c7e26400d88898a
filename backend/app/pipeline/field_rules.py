"""Field rule registry: single source of truth for what a case must contain.

Three static tables (KYC DOC 011):
  - MINIMUM_REQUIRED: the submit gate.  Together with the phone-OR rule
    and the company-only contact/person items it decides ``can_submit``.
  - ALL_FIELDS: the wider per-section breakdown.  Each row has
      key / label / priority (1 must-have, 2 important, 3 optional) /
      section / company_only / conditional_on ``(field, required_value)``
  - DOCUMENT_CHECKLIST: document types with ``required_for`` in
      all | company | individual | supplier

Rows are pure data; ``progress.score()`` owns all behaviour.
"""

from __future__ import annotations
from typing import Any

from app.pipeline.record import normalise_entity_type

SECTION_APPLICANT = "Applicant Details"
SECTION_FINANCIALS = "Financials"
SECTION_ACTIVITY = "Business Activity"
SECTION_AML = "AML / CFT"
SECTION_MONITORING = "Transaction Monitoring"
SECTION_DECLARATIONS = "Declarations"
SECTION_PERSONS = "Directors & Signatories"

# ───────────────────────────────────────────────────────
# Submit gate
# ───────────────────────────────────────────────────────

MINIMUM_REQUIRED: list[dict[str, str]] = [
    {"key": "entity_type",               "label": "Entity type (Company / Individual)"},
    {"key": "registered_name",           "label": "Registered name / Full name"},
    {"key": "registration_or_id_number", "label": "Registration / ID / Passport number"},
    {"key": "business_address",          "label": "Business address"},
    {"key": "email_address",             "label": "Email address"},
    {"key": "type_of_business",          "label": "Type of business"},
    {"key": "pep_related",               "label": "PEP declaration (1.15)"},
    {"key": "popia_consent",             "label": "POPIA/FICA consent"},
]

# Either number satisfies the single phone gate item
PHONE_GATE = {
    "key": "business_phone",
    "label": "Business phone number",
    "any_of": ["business_phone_work", "business_phone_cell"],
}

COMPANY_CONTACT_GATE = {"key": "contact_person_name", "label": "Contact person name"}

PERSON_GATE = {
    "key": "associated_persons",
    "label": "At least one director, owner, or authorised signatory",
    "section": SECTION_PERSONS,
}

# ───────────────────────────────────────────────────────
# Section breakdown
# ───────────────────────────────────────────────────────

def _row(key: str, label: str, priority: int, section: str,
         company_only: bool = False,
         conditional_on: tuple[str, Any] | None = None) -> dict[str, Any]:
    return {
        "key": key,
        "label": label,
        "priority": priority,
        "section": section,
        "company_only": company_only,
        "conditional_on": conditional_on,
    }


ALL_FIELDS: list[dict[str, Any]] = [
    # Section A
    _row("entity_type", "Entity type", 1, SECTION_APPLICANT),
    _row("registered_name", "Registered name", 1, SECTION_APPLICANT),
    _row("registration_or_id_number", "Registration / ID number", 1, SECTION_APPLICANT),
    _row("business_address", "Business address", 1, SECTION_APPLICANT),
    _row("business_phone_work", "Business phone (work)", 1, SECTION_APPLICANT),
    _row("email_address", "Business email", 1, SECTION_APPLICANT),
    _row("type_of_business", "Type of business", 1, SECTION_APPLICANT),
    _row("contact_person_name", "Contact person name", 1, SECTION_APPLICANT, company_only=True),
    _row("contact_person_email", "Contact person email", 2, SECTION_APPLICANT, company_only=True),
    _row("fica_org_id", "FICA Org ID", 2, SECTION_APPLICANT),
    _row("tax_number", "Tax registration number", 2, SECTION_APPLICANT),
    _row("vat_number", "VAT registration number", 2, SECTION_APPLICANT),
    _row("vat_category", "VAT category", 3, SECTION_APPLICANT),
    _row("pep_related", "PEP declaration (1.15)", 1, SECTION_APPLICANT),
    _row("pep_relationship_details", "PEP relationship details", 1, SECTION_APPLICANT,
         conditional_on=("pep_related", True)),

    # Section D
    _row("bank_name", "Bank name", 1, SECTION_FINANCIALS),
    _row("account_name", "Account holder name", 1, SECTION_FINANCIALS),
    _row("account_number", "Account number", 1, SECTION_FINANCIALS),
    _row("branch_code", "Branch code", 2, SECTION_FINANCIALS),
    _row("source_of_funds_description", "Source of funds", 1, SECTION_FINANCIALS),
    _row("audit_company_name", "Audit company name", 2, SECTION_FINANCIALS, company_only=True),

    # Section E
    _row("business_activity_description", "Business activity description", 1, SECTION_ACTIVITY),
    _row("holds_license", "Holds license/permit", 1, SECTION_ACTIVITY),
    _row("license_number", "License number", 2, SECTION_ACTIVITY,
         conditional_on=("holds_license", True)),

    # Section G
    _row("subject_to_aml_law", "Subject to AML/CFT law", 1, SECTION_AML),
    _row("has_aml_conformity_program", "AML conformity program", 2, SECTION_AML),
    _row("has_anti_bribery_policy", "Anti-bribery policy", 1, SECTION_AML),
    _row("provides_aml_training", "AML training for employees", 2, SECTION_AML),

    # Section H
    _row("performs_risk_assessment", "Risk-based assessment", 1, SECTION_MONITORING),
    _row("suspicious_tx_reporting", "Suspicious transaction procedures", 1, SECTION_MONITORING),
    _row("payment_method_primary", "Primary payment method", 1, SECTION_MONITORING),

    # Section I
    _row("fica_processing_authorised", "FICA processing authorisation", 1, SECTION_DECLARATIONS),
    _row("popia_consent", "POPIA consent", 1, SECTION_DECLARATIONS),
    _row("info_true_declaration", "Information accuracy declaration", 1, SECTION_DECLARATIONS),
    _row("declaration_signature_name", "Signatory name", 1, SECTION_DECLARATIONS),
    _row("declaration_signature_date", "Signature date", 1, SECTION_DECLARATIONS),
]

# key → field rule
FIELD_RULE_BY_KEY: dict[str, dict[str, Any]] = {f["key"]: f for f in ALL_FIELDS}

# ───────────────────────────────────────────────────────
# Documents checklist (KYC DOC 011 page 2)
# ───────────────────────────────────────────────────────

DOCUMENT_CHECKLIST: list[dict[str, str]] = [
    {"doc_type": "company_registration",     "label": "Company registration documents (CIPC)",           "required_for": "company"},
    {"doc_type": "beneficial_ownership",     "label": "Beneficial ownership certificate/declaration",    "required_for": "company"},
    {"doc_type": "group_structure",          "label": "Group structure indicating % shareholding",       "required_for": "company"},
    {"doc_type": "shareholder_certificates", "label": "Shareholder certificates and registers",          "required_for": "company"},
    {"doc_type": "bbbee_cert",               "label": "B-BBEE affidavit/certificate (if applicable)",    "required_for": "all"},
    {"doc_type": "tax_compliance",           "label": "Tax compliance pin / tax registration",           "required_for": "all"},
    {"doc_type": "bank_confirmation",        "label": "Bank confirmation letter (≤3 months old)",        "required_for": "all"},
    {"doc_type": "address_proof",            "label": "Business address proof",                         "required_for": "all"},
    {"doc_type": "id_passport",              "label": "IDs/passports for all owners/directors",         "required_for": "all"},
    {"doc_type": "license_permit",           "label": "Licenses/permits to trade precious metals (if applicable)", "required_for": "all"},
    {"doc_type": "import_export_permit",     "label": "Import/Export permits (if applicable)",          "required_for": "all"},
    {"doc_type": "police_clearance",         "label": "Police clearance certificates (if supplier, ≤12 months)", "required_for": "supplier"},
    {"doc_type": "supply_chain_declaration", "label": "MetCon Supply Chain Declaration (if supplier)",   "required_for": "supplier"},
    {"doc_type": "aml_policy",               "label": "AML/CFT policies/procedures document",           "required_for": "all"},
]

# Every accepted doc_type, including those not on the checklist
DOC_TYPE_LABELS: dict[str, str] = {
    "company_registration":     "Company Registration Documents (CIPC)",
    "beneficial_ownership":     "Beneficial Ownership Certificate/Declaration",
    "group_structure":          "Group Structure (% shareholding)",
    "shareholder_certificates": "Shareholder Certificates & Registers",
    "bbbee_cert":               "B-BBEE Affidavit/Certificate",
    "vat_revalidation":         "VAT Domestic Reverse Charge Revalidation Letter",
    "tax_compliance":           "Tax Compliance Pin / Tax Registration Certificate",
    "bank_confirmation":        "Bank Confirmation Letter (≤3 months)",
    "address_proof":            "Business Address Proof",
    "id_passport":              "ID / Passport Copy",
    "license_permit":           "License/Permit to Trade Precious Metals",
    "import_export_permit":     "Import/Export Permit",
    "police_clearance":         "Police Clearance Certificate (≤12 months)",
    "supply_chain_declaration": "MetCon Supply Chain Declaration",
    "aml_policy":               "AML/CFT Policy Document",
    "anti_bribery_policy":      "Anti-Bribery Policy Document",
    "association_proof":        "Precious Metal Association Membership Proof",
    "other":                    "Other Document",
}


def doc_type_label(doc_type: str) -> str:
    return DOC_TYPE_LABELS.get(doc_type, doc_type)


# ───────────────────────────────────────────────────────
# Applicability
# ───────────────────────────────────────────────────────

def relevant_checklist(entity_type: str | None) -> list[dict[str, str]]:
    """Checklist rows that count toward the documents bar.

    ``all`` rows always count; ``company`` rows only for companies;
    ``individual`` rows for anything that is not a company.  ``supplier``
    rows are never counted because nothing on the record says whether the
    counterparty is a supplier.
    """
    is_company = normalise_entity_type(entity_type) == "Company"
    relevant = []
    for item in DOCUMENT_CHECKLIST:
        required_for = item["required_for"]
        if required_for == "all":
            relevant.append(item)
        elif required_for == "company" and is_company:
            relevant.append(item)
        elif required_for == "individual" and not is_company:
            relevant.append(item)
    return relevant


def applicable_fields(entity_type: str | None, values: dict[str, Any]) -> list[dict[str, Any]]:
    """ALL_FIELDS rows that apply given the entity type and current values.

    ``values`` only needs the parent keys referenced by ``conditional_on``.
    A conditional row applies only when its parent equals the required
    value exactly (``None`` or ``False`` parents never trigger it).
    """
    is_company = normalise_entity_type(entity_type) == "Company"
    rows = []
    for rule in ALL_FIELDS:
        if rule["company_only"] and not is_company:
            continue
        cond = rule["conditional_on"]
        if cond is not None:
            parent, required_value = cond
            if values.get(parent) is not required_value:
                continue
        rows.append(rule)
    return rows
