"""Public schema exports for the HMR suite."""

from . import clinical
from .templates import TemplateDescriptor, TemplateKind
from .workflow import STEP_ORDER, STEP_SECTIONS, WorkflowStep

from .clinical import *  # noqa: F401,F403

__all__ = [
    "STEP_ORDER",
    "STEP_SECTIONS",
    "TemplateDescriptor",
    "TemplateKind",
    "WorkflowStep",
]
__all__ += clinical.__all__
