"""Tests for hmr/reporting/phrases.py - report prose from interview answers."""

import pytest

from hmr_schemas.clinical import (
    FLUID_INTAKE_OPTIONS,
    MEDICATION_ADMINISTRATION_OPTIONS,
    MEDICATION_ADHERENCE_OPTIONS,
    MEDICATION_UNDERSTANDING_OPTIONS,
    CanonicalRecord,
    InterviewResponse,
    PatientInfo,
)
from hmr.reporting import phrases


def _record(gender="Female", **interview):
    return CanonicalRecord(
        patient=PatientInfo(name="Jane Citizen", gender=gender),
        interview=InterviewResponse(**interview),
    )


class TestPronouns:
    @pytest.mark.parametrize(
        "gender,subject,plural",
        [("Female", "she", False), ("m", "he", False), ("", "they", True), (None, "they", True)],
    )
    def test_pronouns_for(self, gender, subject, plural):
        pronouns = phrases.pronouns_for(gender)
        assert pronouns.subject == subject
        assert pronouns.plural is plural


class TestFormatDate:
    def test_iso_to_au(self):
        assert phrases.format_date("2024-03-01") == "01/03/2024"

    def test_passthrough_and_placeholder(self):
        assert phrases.format_date("March 2024") == "March 2024"
        assert phrases.format_date("", "[Date]") == "[Date]"


class TestInterviewPhrases:
    def test_understanding(self):
        text = phrases.medication_understanding(_record(medication_understanding=MEDICATION_UNDERSTANDING_OPTIONS[0]))
        assert text.startswith("Jane Citizen has a good level of understanding")
        assert "she was prescribed her medications" in text

    def test_understanding_without_gender(self):
        text = phrases.medication_understanding(_record(gender="", medication_understanding="Poor"))
        assert "they were prescribed their medications" in text

    def test_administration(self):
        record = _record(gender="Male", medication_administration=MEDICATION_ADMINISTRATION_OPTIONS[0])
        assert phrases.medication_administration(record) == "He currently uses a DAA packed by his local pharmacy."

    def test_adherence_with_comments(self):
        record = _record(medication_adherence=MEDICATION_ADHERENCE_OPTIONS[0], adherence_comments="Uses phone alarms.")
        text = phrases.medication_adherence(record)
        assert text.startswith("Good compliance.")
        assert text.endswith("Uses phone alarms.")

    def test_inadequate_fluids_mentions_diuretics(self):
        record = _record(fluid_intake=FLUID_INTAKE_OPTIONS[1], tea_cups_daily=3, coffee_cups_daily="0")
        text = phrases.fluid_intake(record)
        assert "tea (3 daily)" in text
        assert "coffee" not in text

    def test_unrecognised_answer_echoed(self):
        record = _record(eating_habits="Skips lunch")
        assert phrases.eating_habits(record) == "Eating habits: Skips lunch."

    @pytest.mark.parametrize(
        "func",
        [
            phrases.medication_understanding,
            phrases.medication_administration,
            phrases.medication_adherence,
            phrases.fluid_intake,
            phrases.eating_habits,
        ],
    )
    def test_unanswered_never_empty(self, func):
        text = func(_record())
        assert text
        assert "None" not in text


class TestLifestylePhrases:
    def test_current_smoker(self):
        text = phrases.smoking(InterviewResponse(smoking_status="Current smoker", cigarettes_daily="10"))
        assert text.startswith("Current smoker, 10 cigarettes per day.")
        assert "Quitline" in text

    def test_ex_smoker_without_date(self):
        text = phrases.smoking(InterviewResponse(smoking_status="Ex-smoker"))
        assert "quit date: not specified" in text

    def test_regular_alcohol(self):
        text = phrases.alcohol(
            InterviewResponse(alcohol_consumption="Regular alcohol consumption", alcohol_drinks_weekly="14")
        )
        assert "14 standard drinks per week" in text

    def test_recreational_drug_defaults(self):
        text = phrases.recreational_drugs(InterviewResponse(recreational_drug_use="Occasional recreational drug use"))
        assert text == "Occasional recreational drug use: type not specified (frequency not specified)."

    def test_next_review_default(self):
        assert phrases.next_review(InterviewResponse()) == "6 months from interview date"
        assert phrases.next_review(InterviewResponse(next_review_date="2024-09-01")) == "01/09/2024"

    def test_allergies_default(self):
        assert phrases.allergies(CanonicalRecord()) == "Nil known drug allergies (NKDA)"
