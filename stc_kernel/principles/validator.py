"""
Validation Engine — language checks guarding chart outcomes and realities.

Evaluates proposed desired outcomes and current-reality statements against
the two structural tension principles. Returns structured pass/violation
rulings with remediation text meant for the person writing the chart.

Behavioral Contract:
- Stateless: the same text always yields the same ruling
- Runs before any entity is created or mutated
- One matched term rejects the whole string; all matched terms are reported
- Remediation messages are user-facing guidance and are returned verbatim
"""

from typing import List, Optional

from stc_kernel.errors import (
    CreativeOrientationViolation,
    DelayedResolutionViolation,
    DomainPrincipleViolation,
)
from stc_kernel.models.principles import Principle, PrincipleCheck, PrincipleVerdict


# Elimination-oriented verbs: outcomes must name what is created
PROBLEM_SOLVING_TERMS = [
    "fix", "solve", "eliminate", "prevent", "stop", "avoid", "reduce", "remove",
]

# Readiness phrases: reality must not resolve the tension early
READINESS_TERMS = ["ready to", "prepared to", "all set", "ready for", "set to"]

_TIP = "💡 **Tip**: Run 'init_llm_guidance' for complete methodology overview."


def _detect_terms(text: str, terms: List[str]) -> List[str]:
    """Case-insensitive substring match, in blocklist order."""
    lowered = text.lower()
    return [term for term in terms if term in lowered]


def _format_creative_orientation_detail(outcome: str, terms: List[str]) -> str:
    return f"""🌊 CREATIVE ORIENTATION REQUIRED

Desired Outcome: "{outcome}"

❌ **Problem**: Contains problem-solving language: "{', '.join(terms)}"
📚 **Principle**: Structural Tension Charts use creative orientation - focus on what you want to CREATE, not what you want to eliminate.

🎯 **Reframe Your Outcome**:
Instead of elimination → Creation focus

✅ **Examples**:
- Instead of: "Fix communication problems"
- Use: "Establish clear, effective communication practices"

- Instead of: "Reduce website loading time"
- Use: "Achieve fast, responsive website performance"

**Why This Matters**: Problem-solving creates oscillating patterns. Creative orientation creates advancing patterns toward desired outcomes.

{_TIP}"""


def _format_readiness_detail(reality: str, terms: List[str]) -> str:
    return f"""🌊 DELAYED RESOLUTION PRINCIPLE VIOLATION

Current Reality: "{reality}"

❌ **Problem**: Contains readiness assumptions: "{', '.join(terms)}"
📚 **Principle**: "Tolerate discrepancy, tension, and delayed resolution" - Robert Fritz

🎯 **What's Needed**: Factual assessment of your actual current state (not readiness or preparation).

✅ **Examples**:
- Instead of: "Ready to learn Python"
- Use: "Never programmed before, interested in web development"

- Instead of: "Prepared to start the project"
- Use: "Have project requirements, no code written yet"

**Why This Matters**: Readiness assumptions prematurely resolve the structural tension needed for creative advancement.

{_TIP}"""


def _format_missing_reality_detail(
    action_title: str, parent_reference: Optional[str] = None
) -> str:
    parent_line = f'\nParent chart: "{parent_reference}"' if parent_reference else ""
    return f"""🌊 DELAYED RESOLUTION PRINCIPLE VIOLATION

Action step: "{action_title}"{parent_line}

❌ **Problem**: Current reality assessment missing
📚 **Principle**: "Tolerate discrepancy, tension, and delayed resolution" - Robert Fritz

🎯 **What's Needed**: Honest assessment of your actual current state relative to this action step.

✅ **Examples**:
- "Never used Django, completed Python basics"
- "Built one API, struggling with authentication"
- "Read 3 chapters, concepts still unclear"

❌ **Avoid**: "Ready to begin", "Prepared to start", "All set to..."

**Why This Matters**: Premature resolution destroys the structural tension that generates creative advancement. The system NEEDS honest current reality to create productive tension.

{_TIP}"""


def _passed(principle: Principle, text: Optional[str]) -> PrincipleCheck:
    return PrincipleCheck(
        principle=principle,
        verdict=PrincipleVerdict.PASS,
        text=text,
    )


class ValidationEngine:
    """
    Stateless principle checks.

    `check_*` methods return a PrincipleCheck; `enforce` turns a violating
    check into the matching DomainPrincipleViolation.
    """

    def check_creative_orientation(self, outcome: str) -> PrincipleCheck:
        """Reject outcomes phrased as something to get rid of."""
        terms = _detect_terms(outcome, PROBLEM_SOLVING_TERMS)
        if not terms:
            return _passed(Principle.CREATIVE_ORIENTATION, outcome)
        return PrincipleCheck(
            principle=Principle.CREATIVE_ORIENTATION,
            verdict=PrincipleVerdict.VIOLATION,
            text=outcome,
            detected_terms=terms,
            violation_reason="problem_solving_language",
            remediation=_format_creative_orientation_detail(outcome, terms),
        )

    def check_delayed_resolution(self, reality: str) -> PrincipleCheck:
        """Reject current-reality statements that assert readiness."""
        terms = _detect_terms(reality, READINESS_TERMS)
        if not terms:
            return _passed(Principle.DELAYED_RESOLUTION, reality)
        return PrincipleCheck(
            principle=Principle.DELAYED_RESOLUTION,
            verdict=PrincipleVerdict.VIOLATION,
            text=reality,
            detected_terms=terms,
            violation_reason="readiness_assumption",
            remediation=_format_readiness_detail(reality, terms),
        )

    def check_current_reality_present(
        self,
        action_title: str,
        current_reality: Optional[str],
        parent_reference: Optional[str] = None,
    ) -> PrincipleCheck:
        """An action step's reality must be stated, never defaulted."""
        if current_reality is not None and current_reality.strip():
            return _passed(Principle.DELAYED_RESOLUTION, current_reality)
        return PrincipleCheck(
            principle=Principle.DELAYED_RESOLUTION,
            verdict=PrincipleVerdict.VIOLATION,
            text=current_reality,
            violation_reason="current_reality_missing",
            remediation=_format_missing_reality_detail(action_title, parent_reference),
        )

    def enforce(self, check: PrincipleCheck) -> None:
        """Raise the violation a failed check describes; no-op on pass."""
        if check.passed:
            return
        if check.principle == Principle.CREATIVE_ORIENTATION:
            raise CreativeOrientationViolation(check.remediation, check.detected_terms)
        if check.principle == Principle.DELAYED_RESOLUTION:
            raise DelayedResolutionViolation(check.remediation, check.detected_terms)
        raise DomainPrincipleViolation(
            check.remediation or "Principle violated.",
            check.principle.value,
            check.detected_terms,
        )

    def validate_chart_inputs(self, desired_outcome: str, current_reality: str) -> None:
        """Both checks a new chart must pass, outcome first."""
        self.enforce(self.check_creative_orientation(desired_outcome))
        self.enforce(self.check_delayed_resolution(current_reality))
