"""Endpoint tests: route coroutines are called directly with a temp store."""

import csv
import io
import json

import pytest
from fastapi import BackgroundTasks, HTTPException
from starlette.datastructures import Headers, UploadFile

from app.api.admin import (
    CaseDataUpdate,
    CaseUpdate,
    DocumentUpdate,
    delete_case,
    download_document,
    export_cases,
    list_cases,
    normalise_edits,
    update_case,
    update_document,
)
from app.api.cases import create_case, export_case, get_case, get_progress
from app.api.chat import ChatRequest, chat
from app.api.documents import (
    _sanitize_filename,
    analyse_upload,
    document_checklist,
    list_documents,
    upload_document,
)
from app.api.submit import submit_case
from app.pipeline.llm_client import ExtractionRateLimitError
from app.reports.export import CSV_COLUMNS, cases_to_csv

from conftest import FakeExtractor, director, individual_gate_fields


def _upload(data: bytes, filename="id.pdf", content_type="application/pdf") -> UploadFile:
    return UploadFile(
        file=io.BytesIO(data),
        filename=filename,
        headers=Headers({"content-type": content_type}),
    )


async def _new_case(store) -> tuple[str, str]:
    created = await create_case(store=store)
    return created["token"], created["case_id"]


def _fill(store, case_id, **fields):
    case = store.load(case_id)
    for key, value in fields.items():
        setattr(case.record, key, value)
    store.save(case)
    return case


async def _do_upload(store, storage, token, data=b"%PDF-1.4 content", doc_type="id_passport",
                     extractor=None, person_id=None, **kw):
    tasks = BackgroundTasks()
    result = await upload_document(
        token,
        tasks,
        file=_upload(data, **kw),
        doc_type=doc_type,
        associated_person_id=person_id,
        store=store,
        storage=storage,
        extractor=extractor or FakeExtractor(),
    )
    return result, tasks


# ═══════════════════════════════════════════════════
# Cases
# ═══════════════════════════════════════════════════

class TestCases:

    @pytest.mark.asyncio
    async def test_create_adds_welcome(self, store):
        token, case_id = await _new_case(store)
        case = store.load(case_id)
        assert case.token == token
        assert len(case.messages) == 1
        assert case.messages[0]["metadata"]["type"] == "welcome"
        assert "Alex" in case.messages[0]["content"]
        assert case.status == "in_progress"

    @pytest.mark.asyncio
    async def test_get_case_hides_storage_keys(self, store, storage):
        token, _ = await _new_case(store)
        await _do_upload(store, storage, token)
        response = await get_case(token, store=store)
        body = json.loads(response.body)
        assert body["case"]["token"] == token
        assert "storage_path" not in body["case"]["record"]["documents"][0]
        assert body["progress"]["docs_percent"] == 13

    @pytest.mark.asyncio
    async def test_unknown_token_is_404(self, store):
        with pytest.raises(HTTPException) as exc_info:
            await get_case("not-a-token", store=store)
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_progress(self, store):
        token, case_id = await _new_case(store)
        _fill(store, case_id, entity_type="Individual")
        result = await get_progress(token, store=store)
        assert result["progress"]["mandatory_percent"] == 11
        assert result["submitted_to_compliance"] is False
        assert "**Mandatory Information: 11%**" in result["summary"]

    @pytest.mark.asyncio
    async def test_export_has_attachment_header(self, store):
        token, case_id = await _new_case(store)
        response = await export_case(token, store=store)
        assert f"kyc-case-{case_id[:8]}-" in response.headers["content-disposition"]
        body = json.loads(response.body)
        assert body["case_summary"]["id"] == case_id
        assert body["conversation_summary"]["message_count"] == 1
        assert "documents" not in body["counterparty"]


# ═══════════════════════════════════════════════════
# Chat
# ═══════════════════════════════════════════════════

class TestChat:

    @pytest.mark.asyncio
    async def test_turn_is_saved(self, store):
        token, case_id = await _new_case(store)
        extractor = FakeExtractor(text_bundle={"entity_type": "Company"})
        result = await chat(token, ChatRequest(message="We are a company"), store=store, extractor=extractor)

        assert result["status"] == "in_progress"
        assert result["extracted_fields"] == {"entity_type": "Company"}
        case = store.load(case_id)
        assert case.record.entity_type == "Company"
        assert len(case.messages) == 3

    @pytest.mark.asyncio
    async def test_empty_message_400(self, store):
        token, _ = await _new_case(store)
        with pytest.raises(HTTPException) as exc_info:
            await chat(token, ChatRequest(message="  "), store=store, extractor=FakeExtractor())
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_too_long_message_400(self, store):
        token, _ = await _new_case(store)
        with pytest.raises(HTTPException) as exc_info:
            await chat(token, ChatRequest(message="x" * 8001), store=store, extractor=FakeExtractor())
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_bad_image_type_415(self, store):
        token, _ = await _new_case(store)
        request = ChatRequest(message="hi", image_data="aGk=", image_mime_type="image/heic")
        with pytest.raises(HTTPException) as exc_info:
            await chat(token, request, store=store, extractor=FakeExtractor())
        assert exc_info.value.status_code == 415

    @pytest.mark.asyncio
    async def test_service_error_is_503_and_nothing_saved(self, store):
        token, case_id = await _new_case(store)
        extractor = FakeExtractor(error=ExtractionRateLimitError("429"))
        with pytest.raises(HTTPException) as exc_info:
            await chat(token, ChatRequest(message="hello"), store=store, extractor=extractor)
        assert exc_info.value.status_code == 503
        assert "Rate limit" in exc_info.value.detail
        assert len(store.load(case_id).messages) == 1


# ═══════════════════════════════════════════════════
# Documents
# ═══════════════════════════════════════════════════

class TestDocuments:

    def test_sanitize_filename(self):
        assert _sanitize_filename("../../etc/pass wd.pdf") == "pass_wd.pdf"
        assert _sanitize_filename("C:\\Users\\me\\bank letter.pdf").endswith("bank_letter.pdf")
        assert _sanitize_filename("") == "document"

    @pytest.mark.asyncio
    async def test_upload_stores_file_and_counts(self, store, storage):
        token, case_id = await _new_case(store)
        result, tasks = await _do_upload(store, storage, token, filename="my id.pdf")

        assert result["success"] is True
        assert result["docs_percent"] == 13
        assert result["document"]["original_name"] == "my_id.pdf"
        assert "storage_path" not in result["document"]
        assert "Document received" in result["ai_message"]
        assert len(tasks.tasks) == 1

        case = store.load(case_id)
        doc = case.record.documents[0]
        assert doc.storage_path.startswith(f"{case_id}/")
        assert storage.get(doc.storage_path) == b"%PDF-1.4 content"
        assert case.messages[-1]["metadata"]["type"] == "document_received"

    @pytest.mark.asyncio
    async def test_background_analysis_queues_confirmation(self, store, storage):
        token, case_id = await _new_case(store)
        extractor = FakeExtractor(document_bundle={"bank_name": "FNB"})
        await _do_upload(store, storage, token, extractor=extractor, doc_type="bank_confirmation")
        doc = store.load(case_id).record.documents[0]

        await analyse_upload(store, case_id, doc, b"%PDF-1.4 content", None, extractor)
        case = store.load(case_id)
        pending = case.oldest_pending()
        assert pending.fields == {"bank_name": "FNB"}
        assert pending.document_id == doc.id
        assert case.messages[-1]["metadata"]["type"] == "document_extraction"

    @pytest.mark.asyncio
    async def test_background_analysis_tolerates_deleted_case(self, store, storage):
        token, case_id = await _new_case(store)
        await _do_upload(store, storage, token)
        doc = store.load(case_id).record.documents[0]
        store.delete(case_id)
        extractor = FakeExtractor(document_bundle={"bank_name": "FNB"})
        await analyse_upload(store, case_id, doc, b"%PDF", None, extractor)
        assert store.list_cases() == []

    @pytest.mark.asyncio
    async def test_unsupported_type_415(self, store, storage):
        token, _ = await _new_case(store)
        with pytest.raises(HTTPException) as exc_info:
            await _do_upload(store, storage, token, filename="a.txt", content_type="text/plain")
        assert exc_info.value.status_code == 415

    @pytest.mark.asyncio
    async def test_bad_doc_type_400(self, store, storage):
        token, _ = await _new_case(store)
        with pytest.raises(HTTPException) as exc_info:
            await _do_upload(store, storage, token, doc_type="selfie")
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_empty_file_400(self, store, storage):
        token, _ = await _new_case(store)
        with pytest.raises(HTTPException) as exc_info:
            await _do_upload(store, storage, token, data=b"")
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_too_large_413(self, store, storage, monkeypatch):
        monkeypatch.setattr("app.api.documents.MAX_UPLOAD_BYTES", 10)
        token, case_id = await _new_case(store)
        with pytest.raises(HTTPException) as exc_info:
            await _do_upload(store, storage, token, data=b"x" * 11)
        assert exc_info.value.status_code == 413
        assert store.load(case_id).record.documents == []

    @pytest.mark.asyncio
    async def test_person_link_must_exist(self, store, storage):
        token, case_id = await _new_case(store)
        person = director()
        _fill(store, case_id, associated_persons=[person])

        with pytest.raises(HTTPException) as exc_info:
            await _do_upload(store, storage, token, person_id="someone-else")
        assert exc_info.value.status_code == 400

        result, _ = await _do_upload(store, storage, token, person_id=person.id)
        assert result["document"]["associated_person_id"] == person.id

    @pytest.mark.asyncio
    async def test_list_and_checklist(self, store, storage):
        token, case_id = await _new_case(store)
        _fill(store, case_id, entity_type="Company")
        await _do_upload(store, storage, token, doc_type="company_registration")

        listed = await list_documents(token, store=store)
        assert listed["count"] == 1

        checklist = await document_checklist(token, store=store)
        assert checklist["total"] == 12
        assert checklist["uploaded_count"] == 1
        uploaded = [i["doc_type"] for i in checklist["items"] if i["uploaded"]]
        assert uploaded == ["company_registration"]
        assert "police_clearance" not in [i["doc_type"] for i in checklist["items"]]


# ═══════════════════════════════════════════════════
# Submission
# ═══════════════════════════════════════════════════

class TestSubmit:

    @pytest.mark.asyncio
    async def test_incomplete_is_422_with_labels(self, store):
        token, case_id = await _new_case(store)
        _fill(store, case_id, entity_type="Individual")
        with pytest.raises(HTTPException) as exc_info:
            await submit_case(token, store=store)
        assert exc_info.value.status_code == 422
        missing = exc_info.value.detail["missing_fields"]
        assert len(missing) == 8
        assert "Registered name / Full name" in missing
        assert "Business phone number" in missing
        assert store.load(case_id).submitted_to_compliance is False

    @pytest.mark.asyncio
    async def test_submit_then_409(self, store):
        token, case_id = await _new_case(store)
        _fill(store, case_id, **individual_gate_fields())

        result = await submit_case(token, store=store)
        assert result["success"] is True
        assert result["mandatory_percent"] == 100

        case = store.load(case_id)
        assert case.status == "submitted_to_compliance"
        assert case.submitted_at == result["submitted_at"]
        assert case.messages[-1]["metadata"]["type"] == "submitted"
        assert case.case_id in case.messages[-1]["content"]

        with pytest.raises(HTTPException) as exc_info:
            await submit_case(token, store=store)
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_status_survives_later_turns(self, store):
        token, case_id = await _new_case(store)
        _fill(store, case_id, **individual_gate_fields())
        await submit_case(token, store=store)
        await chat(token, ChatRequest(message="one more thing"), store=store, extractor=FakeExtractor())
        assert store.load(case_id).status == "submitted_to_compliance"


# ═══════════════════════════════════════════════════
# Admin
# ═══════════════════════════════════════════════════

class TestAdmin:

    def test_normalise_edits(self):
        edits = normalise_edits({
            "customer_metals": "Gold, Silver ,",
            "website": "",
            "entity_type": "company",
            "branch_count": 2,
        })
        assert edits == {
            "customer_metals": ["Gold", "Silver"],
            "website": None,
            "entity_type": "Company",
            "branch_count": 2,
        }

    def test_unknown_field_rejected(self):
        with pytest.raises(HTTPException) as exc_info:
            normalise_edits({"is_admin": True})
        assert exc_info.value.status_code == 400

    def test_unknown_entity_type_rejected(self):
        with pytest.raises(HTTPException) as exc_info:
            normalise_edits({"entity_type": "trust"})
        assert exc_info.value.status_code == 400

    def test_edits_coerced_to_field_kind(self):
        edits = normalise_edits({"pep_related": "true", "branch_count": "3", "max_cash_amount": "R10,000"})
        assert edits == {"pep_related": True, "branch_count": 3, "max_cash_amount": 10000.0}

    @pytest.mark.asyncio
    async def test_lowercase_entity_type_keeps_company(self, store):
        _, case_id = await _new_case(store)
        _fill(store, case_id, entity_type="Company")
        result = await update_case(case_id, CaseUpdate(counterparty={"entity_type": "company"}), store=store)

        assert store.load(case_id).record.entity_type == "Company"
        # 1 of the 11 company gate items
        assert result["progress"]["mandatory_percent"] == 9

    @pytest.mark.asyncio
    async def test_string_bool_edit_drives_pep_review(self, store):
        _, case_id = await _new_case(store)
        result = await update_case(case_id, CaseUpdate(counterparty={"pep_related": "true"}), store=store)

        case = store.load(case_id)
        assert case.record.pep_related is True
        assert result["status"] == "needs_review"
        assert case.status == "needs_review"

    @pytest.mark.asyncio
    async def test_wrong_kind_is_422_and_nothing_written(self, store):
        _, case_id = await _new_case(store)
        update = CaseUpdate(counterparty={"pep_related": "maybe", "branch_count": "lots", "tax_number": "91"})
        with pytest.raises(HTTPException) as exc_info:
            await update_case(case_id, update, store=store)

        assert exc_info.value.status_code == 422
        fields = [e["field"] for e in exc_info.value.detail["errors"]]
        assert fields == ["pep_related", "branch_count"]
        record = store.load(case_id).record
        assert record.pep_related is None
        assert record.branch_count is None
        assert record.tax_number is None

    @pytest.mark.asyncio
    async def test_list_cases(self, store):
        await _new_case(store)
        await _new_case(store)
        result = await list_cases(limit=1, store=store)
        assert result["count"] == 1
        assert result["cases"][0]["message_count"] == 1

    @pytest.mark.asyncio
    async def test_patch_fields_and_rescore(self, store):
        _, case_id = await _new_case(store)
        update = CaseUpdate(counterparty={"entity_type": "Individual", "customer_metals": "Gold, Silver"})
        result = await update_case(case_id, update, store=store)

        assert result["progress"]["mandatory_percent"] == 11
        case = store.load(case_id)
        assert case.record.customer_metals == ["Gold", "Silver"]
        assert case.mandatory_percent == 11

    @pytest.mark.asyncio
    async def test_explicit_status_wins(self, store):
        _, case_id = await _new_case(store)
        update = CaseUpdate(case_data=CaseDataUpdate(status="complete", risk_flag=True))
        result = await update_case(case_id, update, store=store)
        assert result["status"] == "complete"
        case = store.load(case_id)
        assert case.status == "complete"
        assert case.risk_flag is True

    @pytest.mark.asyncio
    async def test_bad_status_400(self, store):
        _, case_id = await _new_case(store)
        with pytest.raises(HTTPException) as exc_info:
            await update_case(case_id, CaseUpdate(case_data=CaseDataUpdate(status="approved")), store=store)
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_value_422(self, store):
        _, case_id = await _new_case(store)
        with pytest.raises(HTTPException) as exc_info:
            await update_case(case_id, CaseUpdate(counterparty={"email_address": "nope"}), store=store)
        assert exc_info.value.status_code == 422
        assert store.load(case_id).record.email_address is None

    @pytest.mark.asyncio
    async def test_delete_removes_files(self, store, storage):
        token, case_id = await _new_case(store)
        await _do_upload(store, storage, token)
        result = await delete_case(case_id, store=store, storage=storage)
        assert result == {"success": True, "files_removed": 1}
        with pytest.raises(HTTPException) as exc_info:
            await delete_case(case_id, store=store, storage=storage)
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_export_csv(self, store):
        _, case_id = await _new_case(store)
        _fill(store, case_id, registered_name='Gold, Silver & Co "Ltd"', pep_related=False, popia_consent=True)

        response = await export_cases(format="csv", id=None, store=store)
        assert response.media_type == "text/csv"
        rows = list(csv.reader(io.StringIO(response.body.decode("utf-8"))))
        assert rows[0] == CSV_COLUMNS
        row = dict(zip(rows[0], rows[1]))
        assert row["registered_name"] == 'Gold, Silver & Co "Ltd"'
        assert row["pep_related"] == "No"
        assert row["popia_consent"] == "Yes"
        assert row["holds_license"] == ""
        assert row["message_count"] == "1"

    @pytest.mark.asyncio
    async def test_export_json_single_case(self, store):
        _, case_id = await _new_case(store)
        response = await export_cases(format="json", id=case_id, store=store)
        body = json.loads(response.body)
        assert body["export_metadata"]["total_cases"] == 1
        assert body["cases"][0]["id"] == case_id

    @pytest.mark.asyncio
    async def test_export_bad_format(self, store):
        with pytest.raises(HTTPException) as exc_info:
            await export_cases(format="xml", id=None, store=store)
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_document_download_and_review(self, store, storage):
        token, case_id = await _new_case(store)
        result, _ = await _do_upload(store, storage, token, filename="bank.pdf")
        doc_id = result["document"]["id"]

        response = await download_document(case_id, doc_id, store=store, storage=storage)
        assert response.body == b"%PDF-1.4 content"
        assert 'filename="bank.pdf"' in response.headers["content-disposition"]

        updated = await update_document(case_id, doc_id, DocumentUpdate(status="verified", notes="ok"), store=store)
        assert updated["document"]["status"] == "verified"
        assert store.load(case_id).find_document(doc_id).notes == "ok"

        with pytest.raises(HTTPException) as exc_info:
            await update_document(case_id, doc_id, DocumentUpdate(status="lost"), store=store)
        assert exc_info.value.status_code == 400

        with pytest.raises(HTTPException) as exc_info:
            await update_document(case_id, "missing", DocumentUpdate(notes="x"), store=store)
        assert exc_info.value.status_code == 404


class TestCsvEncoding:

    def test_empty_export_is_header_only(self):
        assert cases_to_csv([]) == ",".join(CSV_COLUMNS) + "\n"


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self):
        from app.main import health
        assert await health() == {"status": "operational", "platform": "MetCon KYC Onboarding"}
