"""Orchestrator package - coordinates checkout workflows."""
from .core import CheckoutOrchestrator

__all__ = ["CheckoutOrchestrator"]
