"""Prose generated from categorical interview answers.

Each rule looks at one answer (or a small group of related answers) and
returns a sentence for the fixed report. Every rule has a branch for an
unanswered field and one for an answer it does not recognise, so the report
never shows an empty or "None" paragraph.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass

from hmr_schemas.clinical import CanonicalRecord, InterviewResponse


@dataclass(frozen=True)
class Pronouns:
    subject: str
    possessive: str
    objective: str
    # "has"/"have" etc. follow the subject's grammatical number.
    plural: bool = False

    @property
    def Subject(self) -> str:  # noqa: N802
        return self.subject.capitalize()


def pronouns_for(gender: str | None) -> Pronouns:
    normalized = (gender or "").strip().lower()
    if normalized.startswith("f"):
        return Pronouns("she", "her", "her")
    if normalized.startswith("m"):
        return Pronouns("he", "his", "him")
    return Pronouns("they", "their", "them", plural=True)


def _subject_name(record: CanonicalRecord) -> str:
    return record.patient.name.strip() or "The patient"


def _has(value: str, *needles: str) -> bool:
    lowered = value.lower()
    return any(needle.lower() in lowered for needle in needles)


def _count(value: str) -> str:
    text = (value or "").strip()
    return text or "0"


def format_date(value: str | None, placeholder: str = "") -> str:
    """ISO or DD/MM/YYYY input -> DD/MM/YYYY; unknown formats pass through."""
    text = (value or "").strip()
    if not text:
        return placeholder
    for fmt in ("%Y-%m-%d", "%d/%m/%Y"):
        try:
            return dt.datetime.strptime(text, fmt).strftime("%d/%m/%Y")
        except ValueError:
            continue
    return text


def medication_understanding(record: CanonicalRecord) -> str:
    answer = record.interview.medication_understanding
    name = _subject_name(record)
    p = pronouns_for(record.patient.gender)
    verb = "were" if p.plural else "was"
    if not answer.strip():
        return "Medication understanding was not assessed during this review."
    if _has(answer, "good"):
        return f"{name} has a good level of understanding of why {p.subject} {verb} prescribed {p.possessive} medications."
    if _has(answer, "moderate"):
        return (
            f"{name} has a moderate level of understanding of why {p.subject} {verb} prescribed "
            f"{p.possessive} medications. Some clarification was needed for certain medications."
        )
    if _has(answer, "poor"):
        return f"{name} has a poor level of understanding of why {p.subject} {verb} prescribed {p.possessive} medications."
    return f"Medication understanding: {answer.strip()}."


def medication_administration(record: CanonicalRecord) -> str:
    answer = record.interview.medication_administration
    p = pronouns_for(record.patient.gender)
    uses = "use" if p.plural else "uses"
    administers = "self-administer" if p.plural else "self-administers"
    if not answer.strip():
        return "Medication administration arrangements were not recorded."
    if _has(answer, "packed by"):
        return f"{p.Subject} currently {uses} a DAA packed by {p.possessive} local pharmacy."
    if _has(answer, "own DAA"):
        return f"{p.Subject} currently {administers} and {uses} {p.possessive} own DAA."
    if _has(answer, "without using any DAA", "no DAA", "does not use"):
        does = "do" if p.plural else "does"
        return f"{p.Subject} currently {administers} and {does} not use a DAA."
    return f"Medication administration: {answer.strip()}."


def medication_adherence(record: CanonicalRecord) -> str:
    interview = record.interview
    answer = interview.medication_adherence
    p = pronouns_for(record.patient.gender)
    takes = "take" if p.plural else "takes"
    if not answer.strip():
        text = "Adherence was not assessed during this review."
    elif _has(answer, "good compliance"):
        text = "Good compliance. Medications are taken at the same time each day."
    elif _has(answer, "poor compliance"):
        text = (
            "Poor compliance was suspected due to varying dosing times. Lifestyle factors such as sleeping in "
            f"or having breakfast at different times also influence when {p.subject} {takes} {p.possessive} medications."
        )
    elif _has(answer, "discrepanc"):
        text = "Medications are taken at consistent times, but dose discrepancies have been identified."
    else:
        text = f"Adherence: {answer.strip()}."
    if interview.adherence_comments.strip():
        text += f" {interview.adherence_comments.strip()}"
    return text


def fluid_intake(record: CanonicalRecord) -> str:
    interview = record.interview
    answer = interview.fluid_intake
    p = pronouns_for(record.patient.gender)
    if not answer.strip():
        return "Fluid intake was not assessed."
    if _has(answer, "inadequate"):
        text = "Inadequate fluid intake. Limited water intake (less than 2 litres per day)."
        drinks = []
        if _count(interview.tea_cups_daily) != "0":
            drinks.append(f"tea ({interview.tea_cups_daily.strip()} daily)")
        if _count(interview.coffee_cups_daily) != "0":
            drinks.append(f"coffee ({interview.coffee_cups_daily.strip()} daily)")
        if drinks:
            drink = "drink" if p.plural else "drinks"
            text += f" {p.Subject} also {drink} {' and '.join(drinks)}, which can act as diuretic agents."
        if interview.other_fluids.strip():
            text += f" Other fluids: {interview.other_fluids.strip()}."
        return text
    if _has(answer, "adequate"):
        return "Adequate fluid intake, approximately 2 litres per day."
    return f"Fluid intake: {answer.strip()}."


def eating_habits(record: CanonicalRecord) -> str:
    interview = record.interview
    answer = interview.eating_habits
    if not answer.strip():
        return "Eating habits were not assessed."
    if _has(answer, "good"):
        return "Good eating habits. Regular meals and a balanced diet."
    if _has(answer, "poor"):
        text = "Poor eating habits. Irregular meals and dietary concerns identified."
        if interview.dietary_concerns.strip():
            text += f" Specific concerns: {interview.dietary_concerns.strip()}."
        return text
    return f"Eating habits: {answer.strip()}."


def smoking(interview: InterviewResponse) -> str:
    status = interview.smoking_status.strip()
    if not status:
        return "Smoking status not assessed."
    if _has(status, "non-smoker", "non smoker"):
        return "Non-smoker. Continue to abstain from tobacco products."
    if _has(status, "current"):
        return (
            f"Current smoker, {_count(interview.cigarettes_daily)} cigarettes per day. Smoking cessation "
            "counselling provided with referral to Quitline (13 78 48)."
        )
    if _has(status, "ex-smoker", "ex smoker", "former"):
        quit_on = format_date(interview.quit_date, "not specified")
        return f"Ex-smoker, quit date: {quit_on}. Encourage continued abstinence."
    return f"Smoking status: {status}."


def alcohol(interview: InterviewResponse) -> str:
    answer = interview.alcohol_consumption.strip()
    if not answer:
        return "Alcohol consumption not assessed."
    if _has(answer, "no alcohol"):
        return "No alcohol consumption. Continue current abstinence."
    if _has(answer, "regular", "excessive"):
        return (
            f"{answer}, {_count(interview.alcohol_drinks_weekly)} standard drinks per week. Counselling provided "
            "regarding safe drinking guidelines."
        )
    if _has(answer, "minimal"):
        return "Minimal alcohol consumption, within recommended guidelines."
    return f"Alcohol consumption: {answer}."


def recreational_drugs(interview: InterviewResponse) -> str:
    answer = interview.recreational_drug_use.strip()
    if not answer:
        return "Recreational drug use not assessed."
    if _has(answer, "no recreational"):
        return "No recreational drug use."
    if _has(answer, "occasional", "regular"):
        kind = interview.drug_type.strip() or "type not specified"
        how_often = interview.drug_frequency.strip() or "frequency not specified"
        return f"{answer}: {kind} ({how_often})."
    return f"Recreational drug use: {answer}."


def next_review(interview: InterviewResponse) -> str:
    return format_date(interview.next_review_date, "6 months from interview date")


def allergies(record: CanonicalRecord) -> str:
    return record.patient.known_allergies.strip() or "Nil known drug allergies (NKDA)"


__all__ = [
    "Pronouns",
    "alcohol",
    "allergies",
    "eating_habits",
    "fluid_intake",
    "format_date",
    "medication_adherence",
    "medication_administration",
    "medication_understanding",
    "next_review",
    "pronouns_for",
    "recreational_drugs",
    "smoking",
]
