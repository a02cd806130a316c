"""
Narrative summaries.

Builds the structured score summary handed to the text-generation
collaborator (scores only, never raw transactions) and falls back to a
template narrative when no collaborator is configured or it fails.
"""

import logging
from typing import Callable, Dict, List, Optional

from .config.scoring_config import PILLARS
from .exceptions import InvalidInputError
from .snapshots.store import TwinSnapshot

logger = logging.getLogger(__name__)

AUDIENCES = ("consumer", "institution")

PILLAR_NAMES = {
    "income_stability": "Income Stability",
    "spending_discipline": "Spending Discipline",
    "debt_trajectory": "Debt Trajectory",
    "financial_resilience": "Financial Resilience",
    "growth_momentum": "Growth Momentum",
}


def score_tier(score: float) -> str:
    if score >= 80:
        return "excellent"
    if score >= 65:
        return "strong"
    if score >= 50:
        return "moderate"
    if score >= 35:
        return "developing"
    return "early-stage"


def build_score_summary(snapshot: TwinSnapshot, audience: str = "consumer") -> Dict:
    """
    Structured, transaction-free summary of a snapshot.

    Raises:
        InvalidInputError: Unknown audience
    """
    if audience not in AUDIENCES:
        raise InvalidInputError(f"Unknown narrative audience: {audience!r}")

    pillars = snapshot.pillar_scores.to_dict()
    ranked = sorted(PILLARS, key=lambda name: pillars[name], reverse=True)
    return {
        "audience": audience,
        "twin_id": snapshot.twin_id,
        "snapshot_id": snapshot.id,
        "content_hash": snapshot.content_hash,
        "overall_score": snapshot.overall_score,
        "tier": score_tier(snapshot.overall_score),
        "pillar_scores": pillars,
        "lending_readiness": snapshot.lending_readiness.to_dict(),
        "strengths": [PILLAR_NAMES[name] for name in ranked if pillars[name] >= 70],
        "improvements": [PILLAR_NAMES[name] for name in reversed(ranked) if pillars[name] < 50],
        "months_analysed": snapshot.months_analysed,
        "low_confidence": snapshot.low_confidence,
    }


def template_narrative(summary: Dict) -> str:
    """Deterministic narrative built from a score summary."""
    overall = summary["overall_score"]
    pillars = summary["pillar_scores"]

    if summary["audience"] == "institution":
        lines: List[str] = [
            "FINANCIAL TWIN SUMMARY",
            f"Analysis period: {summary['months_analysed']} months",
            f"Overall score: {overall:.1f} / 100 ({summary['tier'].upper()})",
            "",
            "Pillars:",
        ]
        lines.extend(f"  {PILLAR_NAMES[name]}: {pillars[name]:.1f} / 100" for name in PILLARS)
        lines.append("")
        if overall >= 70:
            lines.append("Strong financial behaviour across multiple dimensions.")
        elif overall >= 50:
            lines.append("Moderate stability with identifiable areas of risk.")
        else:
            lines.append("Elevated risk in several dimensions; enhanced due diligence recommended.")
        if summary["low_confidence"]:
            lines.append("Low confidence: fewer than three months of history.")
        return "\n".join(lines)

    parts = [f"Your overall score is {overall:.0f} out of 100, in the {summary['tier']} range."]
    for name in sorted(PILLARS, key=lambda n: pillars[n], reverse=True):
        score = pillars[name]
        if score >= 70:
            note = "one of your standout areas"
        elif score >= 50:
            note = "on the right track"
        else:
            note = "the area with the most room to grow"
        parts.append(f"{PILLAR_NAMES[name]} is {score:.0f}/100 ({note}).")
    if summary["strengths"]:
        parts.append(f"Key strengths: {', '.join(summary['strengths'])}.")
    if summary["improvements"]:
        parts.append(f"Focus next on: {', '.join(summary['improvements'])}.")
    if summary["low_confidence"]:
        parts.append("This profile is based on limited history and will sharpen as more months arrive.")
    return " ".join(parts)


class NarrativeService:
    """Narrative text for a snapshot via an injected generator."""

    def __init__(self, generate_narrative: Optional[Callable[[Dict], str]] = None):
        """
        Args:
            generate_narrative: Callable taking a score summary and returning
                text; the template narrative is used when None
        """
        self.generate_narrative = generate_narrative

    def narrate(self, snapshot: TwinSnapshot, audience: str = "consumer") -> Dict:
        summary = build_score_summary(snapshot, audience)
        text = None
        source = "template"
        if self.generate_narrative is not None:
            try:
                text = self.generate_narrative(summary)
                source = "generator"
            except Exception as exc:
                logger.warning("Narrative generator failed for snapshot %s, using template: %s", snapshot.id, exc)
        if not text:
            text = template_narrative(summary)
            source = "template"
        return {"narrative": text, "source": source, "summary": summary}
