"""JSON Schema definitions for Ollama structured outputs.

The KYC schema declares every extractable field of KYC DOC 011 with its
type and enum so the model cannot invent keys.  Nothing is ``required``:
a greeting or a question must come back as ``{}``.

Used via Ollama's `format: { JSON Schema }` parameter.
"""

from app.pipeline.record import ENUM_FIELDS, PERSON_ROLE_TYPES

# ═══════════════════════════════════════════════════
# ASSOCIATED PERSONS
# ═══════════════════════════════════════════════════

_PERSON_SCHEMA = {
    "type": "object",
    "properties": {
        "person_full_name": {"type": "string"},
        "person_role_type": {"type": "string", "enum": PERSON_ROLE_TYPES},
        "person_nationality": {"type": "string"},
        "country_of_incorporation": {"type": "string"},
        "person_id_or_passport": {"type": "string"},
        "person_address": {"type": "string"},
        "ownership_percentage": {"type": "number"},
        "person_designation": {"type": "string", "description": "Capacity/Designation for auth signatories"},
        "person_email": {"type": "string"},
        "person_phone": {"type": "string"},
    },
}

# ═══════════════════════════════════════════════════
# KYC EXTRACTION
# ═══════════════════════════════════════════════════

EXTRACT_KYC_SCHEMA = {
    "type": "object",
    "properties": {
        # Section A: Applicant Details
        "entity_type": {"type": "string", "enum": list(ENUM_FIELDS["entity_type"])},
        "registered_name": {"type": "string", "description": "Registered company name OR individual full legal name (1.1)"},
        "registration_or_id_number": {"type": "string", "description": "Company reg number / SA ID / Passport number (1.3)"},
        "business_address": {"type": "string", "description": "Full business address incl postal code (1.4)"},
        "business_phone_work": {"type": "string", "description": "Business telephone work number (1.5)"},
        "business_phone_cell": {"type": "string", "description": "Business cell number (1.5)"},
        "email_address": {"type": "string", "description": "Business email address (1.6)"},
        "type_of_business": {"type": "string", "description": "Type of business e.g. Jewellers, Coin Dealer (1.7)"},
        "contact_person_name": {"type": "string", "description": "Contact person name & surname (1.8)"},
        "contact_person_tel_work": {"type": "string"},
        "contact_person_tel_cell": {"type": "string"},
        "contact_person_email": {"type": "string"},
        "fica_org_id": {"type": "string", "description": "FICA Org ID, registered as high-value goods dealer (1.9)"},
        "website": {"type": "string"},
        "tax_number": {"type": "string"},
        "vat_number": {"type": "string"},
        "vat_category": {"type": "string", "description": "VAT tax period category A/B/C/D/E (1.13)"},
        "multiple_branches": {"type": "boolean"},
        "branch_count": {"type": "integer"},
        "pep_related": {"type": "boolean", "description": "Related to a Politically Exposed Person (1.15)"},
        "pep_relationship_details": {"type": "string"},

        # Section D: Financials
        "bank_name": {"type": "string"},
        "account_name": {"type": "string"},
        "account_number": {"type": "string"},
        "branch_code": {"type": "string"},
        "branch_name": {"type": "string"},
        "swift_code": {"type": "string"},
        "audit_company_name": {"type": "string"},
        "auditor_phone_work": {"type": "string"},
        "auditor_phone_cell": {"type": "string"},
        "last_audit_date": {"type": "string", "description": "YYYY-MM-DD"},
        "source_of_funds_description": {"type": "string"},

        # Section E: Business Activity
        "business_type_checkboxes": {
            "type": "array", "items": {"type": "string"},
            "description": "Bank, Jeweller, Precious metals trader/dealer, Coins dealer, Scrap dealer, Mint, Refiner, Industrial, Wholesaler, Other",
        },
        "business_activity_description": {"type": "string"},
        "holds_license": {"type": "boolean"},
        "license_types": {
            "type": "array", "items": {"type": "string"},
            "description": "Mining, Refining, Beneficiation, Jewellers permit, Second-hand goods certificate, Recyclers certificate, Import license, Export license, Other",
        },
        "license_number": {"type": "string"},
        "license_expiry_date": {"type": "string", "description": "YYYY-MM-DD"},

        # Section F: Facilities & Materials
        "has_smelting_facilities": {"type": "boolean"},
        "has_manufacturing_facilities": {"type": "boolean"},
        "produces_retail_products": {"type": "boolean"},
        "customer_metals": {"type": "array", "items": {"type": "string"}, "description": "Gold, Silver, Platinum, Palladium"},
        "metal_forms": {"type": "array", "items": {"type": "string"}, "description": "Castings, Granules, Findings, Alloys"},
        "precious_metal_association": {"type": "boolean"},
        "association_memberships": {"type": "array", "items": {"type": "string"}, "description": "LBMA, RJC, Other"},
        "supplier_metals": {"type": "array", "items": {"type": "string"}, "description": "Metals sent for refining"},
        "source_material_percentage": {"type": "string"},
        "supplier_profile": {"type": "string", "enum": list(ENUM_FIELDS["supplier_profile"])},
        "source_material_country": {"type": "string"},
        "unprocessed_recycled_kg": {"type": "number", "description": "kg/month"},
        "jewellers_sweeps_kg": {"type": "number", "description": "kg/month"},
        "melted_recycled_kg": {"type": "number", "description": "kg/month"},
        "primary_mined_kg": {"type": "number", "description": "kg/month"},
        "mine_name": {"type": "string"},
        "mine_address": {"type": "string"},
        "mining_permit_number": {"type": "string"},

        # Section G: AML / CFT
        "subject_to_aml_law": {"type": "boolean"},
        "aml_law_name": {"type": "string"},
        "aml_regulator": {"type": "string"},
        "has_aml_conformity_program": {"type": "boolean"},
        "aml_responsible_person_name": {"type": "string"},
        "aml_responsible_person_phone": {"type": "string"},
        "aml_responsible_person_email": {"type": "string"},
        "has_anti_bribery_policy": {"type": "boolean"},
        "charged_for_anti_bribery": {"type": "boolean"},
        "provides_aml_training": {"type": "boolean"},

        # Section H: Transaction Monitoring
        "performs_risk_assessment": {"type": "boolean"},
        "suspicious_tx_reporting": {"type": "boolean"},
        "suspicious_detection_details": {"type": "string"},
        "registers_precious_metal_tx": {"type": "boolean"},
        "monitors_unusual_activity": {"type": "boolean"},
        "unusual_activity_details": {"type": "string"},
        "structured_tx_procedures": {"type": "boolean"},
        "max_cash_amount": {"type": "number", "description": "ZAR"},
        "max_eft_amount": {"type": "number", "description": "ZAR"},
        "supplier_bank_pct": {"type": "number", "description": "0-100"},
        "supplier_company_pct": {"type": "number", "description": "0-100"},
        "supplier_individual_pct": {"type": "number", "description": "0-100"},
        "payment_bank_transfer_pct": {"type": "number", "description": "0-100"},
        "payment_cheque_pct": {"type": "number", "description": "0-100"},
        "payment_cash_pct": {"type": "number", "description": "0-100"},
        "payment_method_primary": {"type": "string", "enum": list(ENUM_FIELDS["payment_method_primary"])},
        "payment_last_year_description": {"type": "string"},

        # Section I: Declaration & Consent
        "fica_processing_authorised": {"type": "boolean"},
        "popia_consent": {"type": "boolean"},
        "info_true_declaration": {"type": "boolean"},
        "confirms_beneficial_owner_goods": {"type": "boolean"},
        "confirms_legitimate_owners": {"type": "boolean"},
        "confirms_prevent_criminal_goods": {"type": "boolean"},
        "confirms_legislation_compliance": {"type": "boolean"},
        "confirms_no_forced_labour": {"type": "boolean"},
        "confirms_environmental_compliance": {"type": "boolean"},
        "confirms_no_bribery": {"type": "boolean"},
        "commits_to_oecd": {"type": "boolean"},
        "declaration_signature_name": {"type": "string"},
        "declaration_signature_position": {"type": "string"},
        "declaration_signature_date": {"type": "string", "description": "YYYY-MM-DD"},

        # Associated persons
        "associated_persons": {
            "type": "array",
            "description": "Directors, shareholders (5%+), UBOs (5%+ individuals), authorised signatories",
            "items": _PERSON_SCHEMA,
        },
    },
}
