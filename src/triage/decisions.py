"""Merging of heuristic and LLM classifications.

The merge prefers each LLM field when present and falls back to the
heuristic value otherwise. An "unknown" heuristic category is resolved to
Enhancement before it can reach the output.
"""

from typing import Optional

from src.triage.models import Category, FinalDecision, HeuristicResult, LLMResult


HEURISTIC_REASONING = "Auto-classified using labels/title heuristics"
COMBINED_REASONING = "Combined heuristic + LLM"


def resolve_category(category: Category) -> Category:
    """Map the heuristic-only "unknown" category to Enhancement."""
    return Category.ENHANCEMENT if category is Category.UNKNOWN else category


def finalize_heuristic(heuristic: HeuristicResult) -> FinalDecision:
    """Turn a heuristic result into a final decision on its own."""
    return FinalDecision(
        category=resolve_category(heuristic.category),
        priority=heuristic.priority,
        duplicates=list(heuristic.duplicates or []),
        reasoning=HEURISTIC_REASONING,
        implementation_order=0,
    )


def merge_heuristic_and_llm(
    heuristic: HeuristicResult,
    llm: Optional[LLMResult],
) -> FinalDecision:
    """Combine a heuristic result with an optional LLM result.

    Args:
        heuristic: The rule-based classification.
        llm: The model's partial classification, if any. Any echoed
            item, even one carrying only issue_number, takes the combined
            path.

    Returns:
        FinalDecision with implementation_order left at 0 for the ranker.
    """
    if llm is None:
        return finalize_heuristic(heuristic)

    if llm.duplicates is not None:
        duplicates = list(llm.duplicates)
    else:
        duplicates = list(heuristic.duplicates or [])

    return FinalDecision(
        category=llm.category or resolve_category(heuristic.category),
        priority=llm.priority or heuristic.priority,
        duplicates=duplicates,
        reasoning=llm.reasoning or heuristic.reasoning or COMBINED_REASONING,
        implementation_order=0,
    )
