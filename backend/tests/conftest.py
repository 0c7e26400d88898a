"""Shared fixtures and builders for the KYC onboarding test suite."""

import pytest

from app.pipeline.record import AssociatedPerson, Case, DocumentRecord, Record
from app.storage import LocalStorage
from app.store import CaseStore


# ═══════════════════════════════════════════════════
# Record builders
# ═══════════════════════════════════════════════════

VALID_SA_ID = "9001045800082"     # passes the Luhn check
DOB_SA_ID = "9001045800088"       # 4 January 1990, check digit not required for enrichment


def make_record(**fields) -> Record:
    record = Record()
    for key, value in fields.items():
        setattr(record, key, value)
    return record


def individual_gate_fields() -> dict:
    """Everything an Individual needs to pass the submit gate."""
    return {
        "entity_type": "Individual",
        "registered_name": "Thandi Mokoena",
        "registration_or_id_number": VALID_SA_ID,
        "business_address": "12 Main Road, Johannesburg",
        "email_address": "thandi@example.co.za",
        "business_phone_cell": "0821234567",
        "type_of_business": "Jewellery retail",
        "pep_related": False,
        "popia_consent": True,
    }


def company_gate_fields() -> dict:
    fields = individual_gate_fields()
    fields.update({
        "entity_type": "Company",
        "registered_name": "Gold Traders (Pty) Ltd",
        "registration_or_id_number": "2015/123456/07",
        "contact_person_name": "Sipho Dlamini",
    })
    return fields


def director(name="John Director", role="Director") -> AssociatedPerson:
    return AssociatedPerson(person_full_name=name, person_role_type=role)


def document(doc_type="id_passport", **kwargs) -> DocumentRecord:
    defaults = {
        "original_name": f"{doc_type}.pdf",
        "storage_path": f"case/{doc_type}.pdf",
        "file_size": 1024,
        "mime_type": "application/pdf",
    }
    defaults.update(kwargs)
    return DocumentRecord(doc_type=doc_type, **defaults)


# ═══════════════════════════════════════════════════
# Extractor double
# ═══════════════════════════════════════════════════

class FakeExtractor:
    """Stands in for LLMExtractor; returns canned bundles and records calls."""

    def __init__(self, text_bundle=None, image_bundle=None, document_bundle=None, error=None):
        self.text_bundle = text_bundle or {}
        self.image_bundle = image_bundle or {}
        self.document_bundle = document_bundle or {}
        self.error = error
        self.text_calls: list[str] = []
        self.image_calls: list[str] = []
        self.document_calls: list[str] = []

    async def extract_text(self, text, entity_type, source="the user's message"):
        self.text_calls.append(text)
        if self.error:
            raise self.error
        return dict(self.text_bundle)

    async def extract_image(self, image_b64, mime_type, entity_type, hint=""):
        self.image_calls.append(mime_type)
        if self.error:
            raise self.error
        return dict(self.image_bundle)

    async def extract_document(self, content, mime_type, entity_type, filename):
        self.document_calls.append(filename)
        if self.error:
            raise self.error
        return dict(self.document_bundle)


# ═══════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════

@pytest.fixture
def empty_case():
    return Case()


@pytest.fixture
def store(tmp_path):
    return CaseStore(tmp_path / "cases")


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(tmp_path / "uploads")
