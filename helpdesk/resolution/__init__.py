"""Operator workflow for confirming or declining pending tickets."""

from .forms import ResolutionForm, decline_description, decline_fields
from .workflow import INCIDENT_PHOTO, PROOF_PHOTO, InFlightRegistry, ResolutionOutcome, ResolutionWorkflow

__all__ = [
    "INCIDENT_PHOTO",
    "InFlightRegistry",
    "PROOF_PHOTO",
    "ResolutionForm",
    "ResolutionOutcome",
    "ResolutionWorkflow",
    "decline_description",
    "decline_fields",
]
