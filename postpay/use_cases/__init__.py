"""Application use cases for checkout staging and reconciliation."""

from .stage_checkout import StageCheckoutUseCase
from .reconcile import EventualLookup, LookupExhausted, ReconciliationPoller
from .complete_upload import UploadCoordinator

__all__ = [
    "StageCheckoutUseCase",
    "EventualLookup",
    "LookupExhausted",
    "ReconciliationPoller",
    "UploadCoordinator",
]
