from __future__ import annotations

import datetime as dt
import re
from typing import Callable, Iterable

from hmr_schemas.clinical import CanonicalRecord
from hmr_schemas.workflow import WorkflowStep, step_for_section

from hmr.reporting.conditions import active_rules, is_required, visible_fields
from hmr.reporting.metadata import IssueSeverity, ValidationIssue
from hmr.reporting.preparer import DEFAULT_PREPARER, PreparerProfile, resolve_preparer
from hmr.reporting.util.path_access import get_path

DEFAULT_CONFIDENCE_THRESHOLD = 0.7

EMAIL_SHAPE = re.compile(r"^\S+@\S+\.\S+$")
_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y")

Rule = Callable[["_RuleContext"], Iterable[ValidationIssue]]


def _missing(value: object) -> bool:
    if isinstance(value, str):
        return not value.strip()
    return value in (None, [], {})


def parse_date(value: str) -> dt.date | None:
    text = (value or "").strip()
    for fmt in _DATE_FORMATS:
        try:
            return dt.datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _blocking(message: str, path: str, rule_id: str) -> ValidationIssue:
    return ValidationIssue(message=message, field_path=path, severity=IssueSeverity.BLOCKING, rule_id=rule_id)


class _RuleContext:
    def __init__(
        self,
        record: CanonicalRecord,
        profile_name: str | PreparerProfile | None,
        static_default: str | None,
        threshold: float,
    ) -> None:
        self.record = record
        self.profile_name = profile_name
        self.static_default = static_default
        self.threshold = threshold


def _rule_patient_name(ctx: _RuleContext) -> Iterable[ValidationIssue]:
    if _missing(ctx.record.patient.name):
        yield _blocking("Patient name is required", "patient.name", "patient.name.required")


def _rule_patient_dob(ctx: _RuleContext) -> Iterable[ValidationIssue]:
    dob = ctx.record.patient.dob
    if _missing(dob):
        yield _blocking("Date of birth is required", "patient.dob", "patient.dob.required")
    elif parse_date(dob) is None:
        yield _blocking(
            f"Date of birth '{dob}' is not a valid date (use YYYY-MM-DD or DD/MM/YYYY)",
            "patient.dob",
            "patient.dob.format",
        )


def _rule_emails(ctx: _RuleContext) -> Iterable[ValidationIssue]:
    # Empty is valid; only a present-but-malformed address is an issue.
    for path, label in (("patient.email", "Patient email"), ("patient.doctor_email", "Doctor email")):
        value = get_path(ctx.record, path) or ""
        if value.strip() and not EMAIL_SHAPE.match(value.strip()):
            yield _blocking(f"{label} '{value}' is not a valid email address", path, f"{path}.format")


def _rule_interview_date(ctx: _RuleContext) -> Iterable[ValidationIssue]:
    value = ctx.record.interview.interview_date
    if _missing(value):
        yield _blocking("Interview date is required", "interview.interview_date", "interview.interview_date.required")
    elif parse_date(value) is None:
        yield _blocking(
            f"Interview date '{value}' is not a valid date",
            "interview.interview_date",
            "interview.interview_date.format",
        )


def _rule_preparer(ctx: _RuleContext) -> Iterable[ValidationIssue]:
    name = resolve_preparer(ctx.record.interview.pharmacist_name, ctx.profile_name, ctx.static_default)
    if not name:
        yield _blocking(
            "Pharmacist name is required (no profile or default preparer available)",
            "interview.pharmacist_name",
            "interview.pharmacist_name.required",
        )


def _rule_conditional(ctx: _RuleContext) -> Iterable[ValidationIssue]:
    for rule in active_rules(ctx.record):
        if _missing(get_path(ctx.record, rule.field_path)):
            yield _blocking(rule.message, rule.field_path, f"{rule.field_path}.conditional")


def _rule_medications(ctx: _RuleContext) -> Iterable[ValidationIssue]:
    for idx, med in enumerate(ctx.record.medications):
        base = f"medications[{idx}]"
        if _missing(med.name):
            yield _blocking(f"Medication {idx + 1} needs a name", f"{base}.name", "medications.name.required")
        if med.needs_review(ctx.threshold):
            yield ValidationIssue(
                message=f"'{med.name or f'Medication {idx + 1}'}' was extracted with low confidence "
                f"({med.confidence:.0%}); please check it",
                field_path=f"{base}.name",
                severity=IssueSeverity.INFORMATIONAL,
                rule_id="medications.confidence.review",
            )


def _rule_recommendations(ctx: _RuleContext) -> Iterable[ValidationIssue]:
    for idx, rec in enumerate(ctx.record.recommendations):
        base = f"recommendations[{idx}]"
        if _missing(rec.issue_identified):
            yield _blocking(
                f"Recommendation {idx + 1} needs the issue identified",
                f"{base}.issue_identified",
                "recommendations.issue_identified.required",
            )
        if _missing(rec.suggested_action):
            yield _blocking(
                f"Recommendation {idx + 1} needs a suggested action",
                f"{base}.suggested_action",
                "recommendations.suggested_action.required",
            )


# Order matters: issues are reported in this order.
RULES: tuple[Rule, ...] = (
    _rule_patient_name,
    _rule_patient_dob,
    _rule_emails,
    _rule_interview_date,
    _rule_preparer,
    _rule_conditional,
    _rule_medications,
    _rule_recommendations,
)


def validate(
    record: CanonicalRecord,
    *,
    profile_name: str | PreparerProfile | None = None,
    static_default: str | None = DEFAULT_PREPARER,
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> list[ValidationIssue]:
    """Run every rule over ``record`` and return the issues in rule order.

    Pure: no clock, no I/O, no globals. Empty medication and recommendation
    lists are valid outcomes and never produce an issue.
    """
    ctx = _RuleContext(record, profile_name, static_default, threshold)
    issues: list[ValidationIssue] = []
    for rule in RULES:
        issues.extend(rule(ctx))
    return issues


def blocking_issues(issues: Iterable[ValidationIssue], section: str | None = None) -> list[ValidationIssue]:
    return [i for i in issues if i.blocking and (section is None or i.section == section)]


def step_for_path(field_path: str) -> WorkflowStep:
    """Wizard step that owns ``field_path`` (target of "Fix Now")."""
    head = field_path.split(".", 1)[0].split("[", 1)[0]
    return step_for_section(head)


def watermark_for(issues: Iterable[ValidationIssue]) -> str:
    return "Draft" if any(True for _ in issues) else "Final"


__all__ = [
    "DEFAULT_CONFIDENCE_THRESHOLD",
    "EMAIL_SHAPE",
    "RULES",
    "blocking_issues",
    "is_required",
    "parse_date",
    "step_for_path",
    "validate",
    "visible_fields",
    "watermark_for",
]
