"""Exception hierarchy for the HMR document pipeline."""

from __future__ import annotations

from typing import Any


class HMRError(Exception):
    """Base error for the document pipeline."""

    retryable: bool = False


class ExtractionFailure(HMRError):
    """The extractor could not process the uploaded document at all.

    Never retried automatically; the user may re-upload.
    """

    retryable = True

    def __init__(self, message: str, media_type: str | None = None):
        self.media_type = media_type
        super().__init__(message)


class PathError(HMRError):
    """A dotted path cannot be serviced by the resolver."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message)


class RenderFailure(HMRError):
    """The renderer itself errored (timeout, resource exhaustion, bad template)."""

    retryable = True


class TemplateError(HMRError):
    """Template loading or discovery error."""

    pass


class UnsupportedTemplateError(TemplateError):
    """Uploaded template is neither a form-fillable PDF nor a merge-field DOCX."""

    pass


class TemplateNotFoundError(TemplateError):
    """No template with that id is visible to the caller."""

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template not found: {template_id}")


class TemplateMappingError(TemplateError):
    """Mapping refers to a field the template does not expose."""

    def __init__(self, message: str, field_name: str | None = None):
        self.field_name = field_name
        super().__init__(message)


class WorkflowError(HMRError):
    """Review workflow transition error."""

    pass


class InvalidTransitionError(WorkflowError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move from {current} to {target}")


class StepBlockedError(WorkflowError):
    """Forward navigation refused because the current step has blocking issues."""

    def __init__(self, step: str, issues: list[Any]):
        self.step = step
        self.issues = list(issues)
        super().__init__(f"{len(self.issues)} blocking issue(s) on step {step}")


class UnsavedChangesError(WorkflowError):
    """Destructive action attempted over unfinalized work without confirmation."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Review {session_id} has unfinalized work; confirmation required")


class StaleResultError(HMRError):
    """A background result arrived for a record revision that no longer exists."""

    def __init__(self, job_id: str, reason: str):
        self.job_id = job_id
        self.reason = reason
        super().__init__(f"Result of job {job_id} discarded: {reason}")


class JobError(HMRError):
    """Background job lookup or state error."""

    def __init__(self, message: str, job_id: str | None = None):
        self.job_id = job_id
        super().__init__(message)


class JobNotFoundError(JobError):
    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}", job_id=job_id)


class JobNotReadyError(JobError):
    """The job has not produced a result yet."""

    def __init__(self, job_id: str, status: str):
        self.status = status
        super().__init__(f"Job {job_id} is {status}", job_id=job_id)


class PersistenceError(HMRError):
    """Database or storage persistence error."""

    def __init__(self, message: str, operation: str | None = None, session_id: str | None = None):
        self.operation = operation
        self.session_id = session_id
        super().__init__(message)


__all__ = [
    "ExtractionFailure",
    "HMRError",
    "InvalidTransitionError",
    "JobError",
    "JobNotFoundError",
    "JobNotReadyError",
    "PathError",
    "PersistenceError",
    "RenderFailure",
    "StaleResultError",
    "StepBlockedError",
    "TemplateError",
    "TemplateMappingError",
    "TemplateNotFoundError",
    "UnsavedChangesError",
    "UnsupportedTemplateError",
    "WorkflowError",
]
