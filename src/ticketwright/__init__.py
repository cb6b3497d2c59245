"""ticketwright: adaptive Jira issue intake: schema-driven wizard, autocomplete, and proxy."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("ticketwright")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from ticketwright.models import Candidate, FieldModel, IssueTypeDescriptor, SubmissionResult
from ticketwright.service import TrackerService
from ticketwright.wizard import WizardController

__all__ = [
    "Candidate",
    "FieldModel",
    "IssueTypeDescriptor",
    "SubmissionResult",
    "TrackerService",
    "WizardController",
    "__version__",
]
