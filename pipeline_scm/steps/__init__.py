"""Checkout steps run an SCM checkout as one step of a build.

Boundary rules:
- Steps depend only on the `SCMBackend` protocol; backends are created per
  use and never cached.
- The revision state attached to a build is only touched under that
  build's lock, and the lock is never held across a backend call.
"""

from .base import (
    MAX_LABEL_LENGTH,
    CheckoutConfig,
    CheckoutListener,
    FlowNode,
    FormValidation,
    LabelAction,
    StepContext,
)
from .checkout import (
    CheckoutOrchestrator,
    CheckoutResult,
    CheckoutStep,
    CheckoutStepDescriptor,
    CheckoutStepExecution,
)
from .git import GitStep
from .listeners import CheckoutHistory, CheckoutHistoryListener, CheckoutRecord, LoggingCheckoutListener
from .logging import FileLogSink

__all__ = [
    "MAX_LABEL_LENGTH",
    "CheckoutConfig",
    "CheckoutHistory",
    "CheckoutHistoryListener",
    "CheckoutListener",
    "CheckoutOrchestrator",
    "CheckoutRecord",
    "CheckoutResult",
    "CheckoutStep",
    "CheckoutStepDescriptor",
    "CheckoutStepExecution",
    "FileLogSink",
    "FlowNode",
    "FormValidation",
    "GitStep",
    "LabelAction",
    "LoggingCheckoutListener",
    "StepContext",
]
