"""Conditional field rules shared by validation and the review form.

A rule says "``field_path`` matters only while ``depends_on`` has one of these
values". The same table answers both "is this field shown?" and "is it
required?", so the form and the validator cannot disagree.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from hmr.reporting.util.path_access import get_path

# Always required, independent of other answers.
BASE_REQUIRED_PATHS: tuple[str, ...] = (
    "patient.name",
    "patient.dob",
    "interview.interview_date",
)

INTERVIEW_FIELD_ORDER: tuple[str, ...] = (
    "interview.interview_date",
    "interview.next_review_date",
    "interview.pharmacist_name",
    "interview.medication_understanding",
    "interview.medication_administration",
    "interview.medication_adherence",
    "interview.adherence_comments",
    "interview.fluid_intake",
    "interview.tea_cups_daily",
    "interview.coffee_cups_daily",
    "interview.other_fluids",
    "interview.eating_habits",
    "interview.dietary_concerns",
    "interview.smoking_status",
    "interview.cigarettes_daily",
    "interview.quit_date",
    "interview.alcohol_consumption",
    "interview.alcohol_drinks_weekly",
    "interview.recreational_drug_use",
    "interview.drug_type",
    "interview.drug_frequency",
)


@dataclass(frozen=True)
class ConditionalRule:
    field_path: str
    depends_on: str
    # Case-insensitive prefixes of the controlling answer that activate the rule.
    when: tuple[str, ...]
    message: str

    def applies(self, record: Any) -> bool:
        value = get_path(record, self.depends_on)
        if not isinstance(value, str) or not value.strip():
            return False
        answer = value.strip().casefold()
        return any(answer.startswith(prefix.casefold()) for prefix in self.when)


CONDITIONAL_RULES: tuple[ConditionalRule, ...] = (
    ConditionalRule(
        "interview.cigarettes_daily",
        "interview.smoking_status",
        ("Current smoker",),
        "Enter cigarettes per day for a current smoker",
    ),
    ConditionalRule(
        "interview.quit_date",
        "interview.smoking_status",
        ("Ex-smoker",),
        "Enter the quit date for an ex-smoker",
    ),
    ConditionalRule(
        "interview.alcohol_drinks_weekly",
        "interview.alcohol_consumption",
        ("Regular alcohol", "Excessive alcohol"),
        "Enter standard drinks per week",
    ),
    ConditionalRule(
        "interview.drug_type",
        "interview.recreational_drug_use",
        ("Occasional recreational", "Regular recreational"),
        "Enter the type of recreational drug used",
    ),
    ConditionalRule(
        "interview.drug_frequency",
        "interview.recreational_drug_use",
        ("Occasional recreational", "Regular recreational"),
        "Enter how often recreational drugs are used",
    ),
    ConditionalRule(
        "interview.dietary_concerns",
        "interview.eating_habits",
        ("Poor eating",),
        "Describe the dietary concerns identified",
    ),
)

_CONDITIONAL_PATHS = {rule.field_path for rule in CONDITIONAL_RULES}


def active_rules(record: Any) -> list[ConditionalRule]:
    return [rule for rule in CONDITIONAL_RULES if rule.applies(record)]


def is_visible(record: Any, path: str) -> bool:
    if path not in _CONDITIONAL_PATHS:
        return True
    return any(rule.applies(record) for rule in CONDITIONAL_RULES if rule.field_path == path)


def is_required(record: Any, path: str) -> bool:
    if path in BASE_REQUIRED_PATHS:
        return True
    return any(rule.applies(record) for rule in CONDITIONAL_RULES if rule.field_path == path)


def visible_fields(record: Any) -> list[str]:
    """Interview paths currently shown, in form order."""
    return [path for path in INTERVIEW_FIELD_ORDER if is_visible(record, path)]


__all__ = [
    "BASE_REQUIRED_PATHS",
    "CONDITIONAL_RULES",
    "ConditionalRule",
    "INTERVIEW_FIELD_ORDER",
    "active_rules",
    "is_required",
    "is_visible",
    "visible_fields",
]
