"""
Order Intake – Error Taxonomy
=============================

Three kinds of failure reach the controller:

- Validation errors: user-correctable input problems; block stage advancement.
- Collaborator errors: interpreter / catalog / geocoder / image store /
  persistence / identity failures; surfaced as a transient notice.
- Reconciliation errors: payments do not match the item total; block Submit only.

Adapters raise these; the WorkflowController catches them at the call site.
"""
from typing import Dict, List, Optional


class OrderIntakeError(Exception):
    """Base class for every order-intake failure"""

    kind = "error"


class ValidationError(OrderIntakeError):
    """User input does not satisfy a gate"""

    kind = "validation"

    def __init__(self, message: str, issues: Optional[List[str]] = None):
        super().__init__(message)
        self.issues = list(issues or [message])


class AddressValidationError(ValidationError):
    """Address text rejected before calling the geocoder"""


class ReconciliationError(OrderIntakeError):
    """Payment entries do not reconcile against the item total"""

    kind = "reconciliation"

    def __init__(self, message: str, issues: Optional[List[str]] = None):
        super().__init__(message)
        self.issues = list(issues or [message])


class CollaboratorError(OrderIntakeError):
    """
    An external service failed.

    Args:
        message: Short, user-facing description
        service: Collaborator name (e.g. 'catalog', 'persistence')
        status_code: HTTP status when the failure came from a response
    """

    kind = "collaborator"

    def __init__(self, message: str, service: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.service = service
        self.status_code = status_code


class InterpretationError(CollaboratorError):
    """Free-text interpretation failed or produced nothing usable"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, service="interpreter", status_code=status_code)


class CatalogSearchError(CollaboratorError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, service="catalog", status_code=status_code)


class GeocodeError(CollaboratorError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, service="geocoder", status_code=status_code)


class ImageStoreError(CollaboratorError):
    def __init__(self, message: str):
        super().__init__(message, service="image_store")


class IdentityError(CollaboratorError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, service="identity", status_code=status_code)


class SubmissionRejected(CollaboratorError):
    """
    Persistence service answered with a non-2xx status.

    field_errors holds the structured per-field reasons exactly as the
    server sent them.
    """

    def __init__(self, message: str, status_code: Optional[int] = None,
                 field_errors: Optional[Dict] = None):
        super().__init__(message, service="persistence", status_code=status_code)
        self.field_errors = field_errors or {}


class SubmitInProgressError(OrderIntakeError):
    """A submission is already in flight"""

    kind = "busy"
