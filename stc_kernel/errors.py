"""
Kernel errors.

Raised by the store, repository and engine; caught only at the operation
boundary (tool router, CLI) and turned into structured failure results.
"""

from typing import List, Optional


class ChartKernelError(Exception):
    """Base class for every error the kernel raises on purpose."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InputValidationError(ChartKernelError):
    """Malformed input: bad date, blank required text, unusable reference."""
    pass


class DomainPrincipleViolation(ChartKernelError):
    """
    A creative-orientation or delayed-resolution language check failed.

    `message` is user-facing remediation guidance and must reach the caller
    unchanged.
    """

    def __init__(
        self,
        message: str,
        principle: str,
        detected_terms: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.principle = principle
        self.detected_terms = list(detected_terms or [])


class CreativeOrientationViolation(DomainPrincipleViolation):
    """Desired outcome uses elimination-oriented language."""

    def __init__(self, message: str, detected_terms: Optional[List[str]] = None):
        super().__init__(message, "creative_orientation", detected_terms)


class DelayedResolutionViolation(DomainPrincipleViolation):
    """Current reality asserts readiness, or is missing altogether."""

    def __init__(self, message: str, detected_terms: Optional[List[str]] = None):
        super().__init__(message, "delayed_resolution", detected_terms)


class NotFoundError(ChartKernelError):
    """Referenced chart, action step or entity does not exist."""
    pass


class HierarchyError(ChartKernelError):
    """An action step was addressed through a chart that does not own it."""
    pass


class GraphStoreError(ChartKernelError):
    """Backing file is unreadable, unwritable or malformed."""
    pass
