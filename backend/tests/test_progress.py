"""Tests for the dual progress scorer."""

from app.pipeline.progress import (
    DualProgress,
    format_progress_for_agent,
    has_qualifying_person,
    has_value,
    score,
)
from app.pipeline.record import Record

from conftest import (
    company_gate_fields,
    director,
    document,
    individual_gate_fields,
    make_record,
)


def _missing_keys(progress: DualProgress) -> set[str]:
    return {m.field for m in progress.mandatory_missing}


# ═══════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════

class TestHasValue:

    def test_values(self):
        assert has_value(False) is True
        assert has_value(0) is True
        assert has_value("x") is True
        assert has_value(["a"]) is True
        assert has_value(None) is False
        assert has_value("   ") is False
        assert has_value([]) is False

    def test_qualifying_person_needs_name_and_role(self):
        record = make_record(associated_persons=[director(role=None)])
        assert has_qualifying_person(record) is False
        record.associated_persons.append(director())
        assert has_qualifying_person(record) is True


# ═══════════════════════════════════════════════════
# Mandatory bar
# ═══════════════════════════════════════════════════

class TestMandatoryBar:

    def test_empty_record(self):
        progress = score(Record())
        assert progress.mandatory_percent == 0
        assert progress.can_submit is False
        assert progress.status == "in_progress"
        assert "entity_type" in {m.field for m in progress.gate_missing}

    def test_only_entity_type_individual(self):
        progress = score(make_record(entity_type="Individual"))
        assert 0 < progress.mandatory_percent < 20
        assert progress.mandatory_percent == 11     # 1 of 9

    def test_company_denominator_is_larger(self):
        individual = score(make_record(entity_type="Individual"))
        company = score(make_record(entity_type="Company"))
        assert company.mandatory_percent == 9       # 1 of 11
        assert company.mandatory_percent < individual.mandatory_percent

    def test_unknown_entity_type_treated_as_unset(self):
        progress = score(make_record(entity_type="Trust"))
        assert progress.mandatory_percent == 0

    def test_individual_gate_complete_can_submit(self):
        progress = score(make_record(**individual_gate_fields()))
        assert progress.mandatory_percent == 100
        assert progress.can_submit is True
        assert progress.gate_missing == []

    def test_either_phone_satisfies_gate(self):
        fields = individual_gate_fields()
        del fields["business_phone_cell"]
        fields["business_phone_work"] = "0111234567"
        assert score(make_record(**fields)).can_submit is True
        del fields["business_phone_work"]
        progress = score(make_record(**fields))
        assert progress.can_submit is False
        assert [m.field for m in progress.gate_missing] == ["business_phone"]

    def test_pep_false_counts_as_answered(self):
        progress = score(make_record(**individual_gate_fields()))
        assert "pep_related" not in {m.field for m in progress.gate_missing}

    def test_company_needs_person_and_contact(self):
        fields = company_gate_fields()
        progress = score(make_record(**fields))
        assert progress.can_submit is False
        assert "associated_persons" in _missing_keys(progress)
        assert progress.has_required_person is False

        with_person = score(make_record(**fields, associated_persons=[director()]))
        assert "associated_persons" not in _missing_keys(with_person)
        assert with_person.has_required_person is True
        assert with_person.can_submit is True

    def test_company_missing_contact_blocks_submit(self):
        fields = company_gate_fields()
        del fields["contact_person_name"]
        progress = score(make_record(**fields, associated_persons=[director()]))
        assert progress.can_submit is False
        assert [m.field for m in progress.gate_missing] == ["contact_person_name"]


# ═══════════════════════════════════════════════════
# Conditional rows and missing-field ordering
# ═══════════════════════════════════════════════════

class TestMissingFields:

    def test_pep_true_adds_exactly_relationship_details(self):
        base = individual_gate_fields()
        without = _missing_keys(score(make_record(**base)))
        base["pep_related"] = True
        with_pep = _missing_keys(score(make_record(**base)))
        assert with_pep - without == {"pep_relationship_details"}
        assert without - with_pep == set()

    def test_pep_false_never_requires_details(self):
        progress = score(make_record(pep_related=False))
        assert "pep_relationship_details" not in _missing_keys(progress)

    def test_only_priority_one_listed(self):
        progress = score(Record())
        assert progress.mandatory_missing
        assert all(m.priority == 1 for m in progress.mandatory_missing)
        assert "vat_category" not in _missing_keys(progress)


# ═══════════════════════════════════════════════════
# Documents bar, overall and status
# ═══════════════════════════════════════════════════

class TestDocumentsAndStatus:

    def test_any_document_raises_docs_percent(self):
        for entity in ("Company", "Individual", None):
            before = score(make_record(entity_type=entity))
            after = score(make_record(entity_type=entity, documents=[document("other_thing")]))
            # non-checklist types do not count
            assert after.docs_percent == before.docs_percent
            after = score(make_record(entity_type=entity, documents=[document("aml_policy")]))
            assert after.docs_percent > before.docs_percent

    def test_duplicate_doc_types_count_once(self):
        one = score(make_record(entity_type="Individual", documents=[document("id_passport")]))
        two = score(make_record(entity_type="Individual", documents=[
            document("id_passport"), document("id_passport"),
        ]))
        assert one.docs_percent == two.docs_percent
        assert two.docs_uploaded == ["id_passport"]

    def test_rejected_document_still_counts(self):
        progress = score(make_record(
            entity_type="Individual", documents=[document("id_passport", status="rejected")],
        ))
        assert progress.docs_percent > 0

    def test_overall_is_rounded_mean(self):
        progress = score(make_record(**individual_gate_fields(), documents=[document("id_passport")]))
        # 100% mandatory, 1 of 8 docs = 13%
        assert progress.docs_percent == 13
        assert progress.overall == 57

    def test_needs_review_when_mandatory_complete(self):
        progress = score(make_record(**individual_gate_fields()))
        assert progress.status == "needs_review"

    def test_pep_forces_needs_review(self):
        progress = score(make_record(entity_type="Individual", pep_related=True))
        assert progress.status == "needs_review"

    def test_complete_needs_all_documents(self):
        from app.pipeline.field_rules import relevant_checklist

        docs = [document(i["doc_type"]) for i in relevant_checklist("Individual")]
        progress = score(make_record(**individual_gate_fields(), documents=docs))
        assert progress.docs_percent == 100
        assert progress.overall == 100
        assert progress.status == "complete"

    def test_sections_reported(self):
        progress = score(make_record(entity_type="Company"))
        labels = {s.label for s in progress.sections}
        assert "Applicant Details" in labels
        assert "Directors & Signatories" in labels

    def test_score_is_idempotent(self):
        record = make_record(**individual_gate_fields())
        assert score(record).to_dict() == score(record).to_dict()


class TestFormatProgress:

    def test_summary_mentions_both_bars(self):
        text = format_progress_for_agent(score(make_record(entity_type="Company")))
        assert "Mandatory Information: 9%" in text
        assert "Documents Supplied: 0%" in text
        assert "Can submit to compliance: No" in text
