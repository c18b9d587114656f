"""
Order Intake Module
Multi-stage draft order workflow: interpretation, catalog confirmation,
delivery geocoding, customer details, payment reconciliation and submission
"""
from .draft_order import (
    DraftOrder,
    LineItem,
    ProductCandidate,
    PaymentEntry,
    PaymentMethod,
    GeocodeResult,
    RecognitionStatus,
    SaleType,
)
from .phone import normalize_phone, phone_error
from .stage_gate import can_advance, item_issues, submission_issues
from .catalog_matcher import CatalogMatcher
from .interpreter import OrderInterpreter
from .address_resolver import AddressResolver
from .controller import WorkflowController
from .services import IntakeServices, build_services

__all__ = [
    'DraftOrder',
    'LineItem',
    'ProductCandidate',
    'PaymentEntry',
    'PaymentMethod',
    'GeocodeResult',
    'RecognitionStatus',
    'SaleType',
    'normalize_phone',
    'phone_error',
    'can_advance',
    'item_issues',
    'submission_issues',
    'CatalogMatcher',
    'OrderInterpreter',
    'AddressResolver',
    'WorkflowController',
    'IntakeServices',
    'build_services',
]
