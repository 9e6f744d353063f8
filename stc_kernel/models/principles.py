"""Principle Check — output of the Validation Engine's language checks."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class Principle(str, Enum):
    CREATIVE_ORIENTATION = "creative_orientation"   # outcomes describe what is created
    DELAYED_RESOLUTION = "delayed_resolution"       # reality never asserts readiness


class PrincipleVerdict(str, Enum):
    PASS = "pass"
    VIOLATION = "violation"


class PrincipleCheck(BaseModel):
    """Ruling on one proposed outcome or current-reality statement."""

    principle: Principle
    verdict: PrincipleVerdict
    text: Optional[str] = None
    detected_terms: List[str] = []
    violation_reason: Optional[str] = None     # Machine-readable
    remediation: Optional[str] = None          # Human-readable, surfaced verbatim

    @property
    def passed(self) -> bool:
        return self.verdict == PrincipleVerdict.PASS
