"""Tests for hmr/reporting - validation rules, conditional fields and preparer resolution."""

import pytest

from hmr_schemas.clinical import CanonicalRecord, MedicationEntry, FieldOrigin
from hmr_schemas.workflow import WorkflowStep
from hmr.reporting.conditions import is_required, visible_fields
from hmr.reporting.metadata import IssueSeverity
from hmr.reporting.preparer import PreparerProfile, resolve_preparer
from hmr.reporting.util.path_access import set_path
from hmr.reporting.validation import blocking_issues, step_for_path, validate, watermark_for


def _paths(issues):
    return [issue.field_path for issue in issues]


class TestValidate:
    def test_complete_record_has_no_issues(self, complete_record):
        issues = validate(complete_record)
        assert issues == []
        assert watermark_for(issues) == "Final"

    def test_empty_record(self):
        issues = validate(CanonicalRecord())
        assert _paths(issues) == ["patient.name", "patient.dob"]
        assert all(issue.blocking for issue in issues)

    def test_empty_lists_are_valid(self, complete_record):
        record = complete_record.model_copy(update={"medications": [], "recommendations": []})
        assert validate(record) == []

    def test_bad_dob_format(self, complete_record):
        record = set_path(complete_record, "patient.dob", "3rd April")
        issues = validate(record)
        assert [i.rule_id for i in issues] == ["patient.dob.format"]

    def test_dd_mm_yyyy_accepted(self, complete_record):
        assert validate(set_path(complete_record, "patient.dob", "03/04/1945")) == []

    def test_empty_doctor_email_is_valid(self, complete_record):
        assert validate(set_path(complete_record, "patient.doctor_email", "")) == []

    def test_malformed_doctor_email(self, complete_record):
        issues = validate(set_path(complete_record, "patient.doctor_email", "gp-at-clinic"))
        assert _paths(issues) == ["patient.doctor_email"]

    def test_preparer_falls_back_to_default(self, complete_record):
        record = set_path(complete_record, "interview.pharmacist_name", "")
        assert validate(record) == []
        issues = validate(record, static_default=None)
        assert _paths(issues) == ["interview.pharmacist_name"]
        assert validate(record, profile_name="Sam Lee", static_default=None) == []

    def test_low_confidence_medication_is_informational(self, complete_record):
        meds = [MedicationEntry(name="Wafarin", confidence=0.4, origin=FieldOrigin.EXTRACTED)]
        record = complete_record.model_copy(update={"medications": meds})
        issues = validate(record)
        assert len(issues) == 1
        assert issues[0].severity == IssueSeverity.INFORMATIONAL
        assert "Wafarin" in issues[0].message
        assert blocking_issues(issues) == []
        # Any issue at all keeps the document a draft.
        assert watermark_for(issues) == "Draft"

    def test_threshold_is_configurable(self, complete_record):
        meds = [MedicationEntry(name="Wafarin", confidence=0.4, origin=FieldOrigin.EXTRACTED)]
        record = complete_record.model_copy(update={"medications": meds})
        assert validate(record, threshold=0.3) == []

    def test_unnamed_medication_blocks(self, complete_record):
        record = complete_record.model_copy(update={"medications": [MedicationEntry()]})
        issues = validate(record)
        assert _paths(issues) == ["medications[0].name"]
        assert issues[0].section == "medications"

    def test_incomplete_recommendation(self, complete_record):
        record = set_path(complete_record, "recommendations[0].suggested_action", " ")
        assert _paths(validate(record)) == ["recommendations[0].suggested_action"]


class TestConditionalFields:
    def test_current_smoker_needs_count(self, complete_record):
        record = set_path(complete_record, "interview.smoking_status", "Current smoker")
        assert is_required(record, "interview.cigarettes_daily")
        assert "interview.cigarettes_daily" in visible_fields(record)
        assert _paths(validate(record)) == ["interview.cigarettes_daily"]

        record = set_path(record, "interview.cigarettes_daily", 10)
        assert validate(record) == []

    def test_hidden_when_not_applicable(self, complete_record):
        fields = visible_fields(complete_record)
        assert "interview.cigarettes_daily" not in fields
        assert "interview.quit_date" not in fields
        assert "interview.smoking_status" in fields

    def test_recreational_drugs_need_type_and_frequency(self, complete_record):
        record = set_path(complete_record, "interview.recreational_drug_use", "Occasional recreational drug use")
        assert _paths(validate(record)) == ["interview.drug_type", "interview.drug_frequency"]


class TestBlockingAndSteps:
    def test_blocking_by_section(self):
        issues = validate(CanonicalRecord())
        assert len(blocking_issues(issues, "patient")) == 2
        assert blocking_issues(issues, "interview") == []

    @pytest.mark.parametrize(
        "path,step",
        [
            ("patient.dob", WorkflowStep.PATIENT_INFO),
            ("medications[3].name", WorkflowStep.MEDICATIONS_REVIEW),
            ("interview.quit_date", WorkflowStep.INTERVIEW),
            ("recommendations[0].issue_identified", WorkflowStep.RECOMMENDATIONS),
            ("report.watermark", WorkflowStep.FINAL_REVIEW),
        ],
    )
    def test_step_for_path(self, path, step):
        assert step_for_path(path) == step


class TestPreparer:
    def test_resolution_order(self):
        assert resolve_preparer("Alex Chen", "Sam Lee", "Default") == "Alex Chen"
        assert resolve_preparer("  ", "Sam Lee", "Default") == "Sam Lee"
        assert resolve_preparer("", None, "Default") == "Default"
        assert resolve_preparer("", None, None) == ""

    def test_profile_display_name(self):
        profile = PreparerProfile(name="Sam Lee", registration_number="PHA0001")
        assert resolve_preparer("", profile) == "Sam Lee (MRN PHA0001)"


class TestDeterminism:
    @pytest.fixture
    def messy_record(self, complete_record):
        record = set_path(complete_record, "patient.dob", "3rd April")
        record = set_path(record, "patient.doctor_email", "gp-at-clinic")
        record = set_path(record, "recommendations[0].suggested_action", "")
        meds = [
            MedicationEntry(name="Wafarin", confidence=0.4, origin=FieldOrigin.EXTRACTED),
            MedicationEntry(),
        ]
        return record.model_copy(update={"medications": meds})

    def test_same_record_same_issues(self, messy_record):
        first = validate(messy_record)
        assert len(first) > 1
        assert validate(messy_record) == first

    def test_equal_records_same_order(self, messy_record):
        copy = CanonicalRecord.model_validate(messy_record.model_dump())
        assert _paths(validate(copy)) == _paths(validate(messy_record))

    def test_empty_record_is_stable(self):
        assert validate(CanonicalRecord()) == validate(CanonicalRecord())
