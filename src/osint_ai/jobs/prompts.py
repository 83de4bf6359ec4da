"""Deterministic prompt construction from investigation findings."""

from __future__ import annotations

from collections.abc import Sequence
from itertools import groupby

from osint_ai.investigations.models import FindingView
from osint_ai.jobs.models import AiJobType
from osint_ai.storage.common import to_utc_aware_datetime

MAX_FINDINGS_INCLUDED = 60
FINDING_TEXT_MAX_CHARS = 240

ANALYSIS_SECTION_HEADINGS: tuple[str, ...] = (
    "Executive Summary",
    "Key Findings",
    "Risks & Red Flags",
    "Recommended Next Steps",
    "Confidence & Caveats",
)
INFERENCE_SECTION_HEADINGS: tuple[str, ...] = (
    "Working Hypotheses",
    "Supporting Evidence",
    "Observed Gaps or Contradictions",
    "Suggested Follow-up Actions",
    "Confidence & Assumptions",
)

_DEFAULT_ANALYSIS_DESCRIPTOR = "comprehensive analysis"


def section_headings(job_type: str) -> tuple[str, ...]:
    if job_type == AiJobType.INFERENCE.value:
        return INFERENCE_SECTION_HEADINGS
    return ANALYSIS_SECTION_HEADINGS


def build_prompt(findings: Sequence[FindingView], job_type: str) -> str:
    """Build the prompt for a job type from findings in collection order."""

    if job_type == AiJobType.INFERENCE.value:
        return build_inference_prompt(findings)
    return build_analysis_prompt(findings, job_type)


def build_analysis_prompt(findings: Sequence[FindingView], analysis_type: str | None) -> str:
    included = list(findings[:MAX_FINDINGS_INCLUDED])
    descriptor = (analysis_type or "").strip()
    if not descriptor or descriptor == AiJobType.ANALYSIS.value:
        descriptor = _DEFAULT_ANALYSIS_DESCRIPTOR

    lines = [
        "You are an experienced OSINT analyst supporting an active investigation.",
        f"Perform a {descriptor} of the supplied findings and highlight what the team "
        "should focus on next.",
        "",
    ]
    lines.extend(_section_guidance(ANALYSIS_SECTION_HEADINGS))
    lines.extend(
        [
            "Formatting guidance:",
            "1. Keep the Executive Summary to a concise 3-5 sentences.",
            "2. Use bullet lists for Key Findings, Risks, and Recommended Next Steps.",
            "3. Always note confidence levels using qualitative language "
            "(e.g., high/medium/low).",
            '4. Call out explicit data gaps or assumptions in the "Confidence & Caveats" '
            "section.",
            "",
        ],
    )
    lines.extend(_dataset_context(len(findings), included))
    lines.extend(_grouped_findings(included))
    return "\n".join(lines) + "\n"


def build_inference_prompt(findings: Sequence[FindingView]) -> str:
    included = list(findings[:MAX_FINDINGS_INCLUDED])

    lines = [
        "You are an OSINT inference engine tasked with synthesizing investigative hypotheses.",
        "Draw meaningful connections between the findings, call out evidence that supports "
        "each hypothesis, and note any gaps that limit confidence.",
        "",
    ]
    lines.extend(_section_guidance(INFERENCE_SECTION_HEADINGS))
    lines.extend(
        [
            "Additional requirements:",
            "1. Highlight non-obvious relationships (shared entities, infrastructure, timelines).",
            "2. Differentiate between strongly supported inferences and speculative ideas.",
            "3. Propose pointed follow-up collection or verification tasks.",
            "",
        ],
    )
    lines.extend(_dataset_context(len(findings), included))
    lines.extend(_grouped_findings(included))
    return "\n".join(lines) + "\n"


def _section_guidance(headings: Sequence[str]) -> list[str]:
    lines = ["Respond in Markdown using the following section headings exactly:"]
    lines.extend(f"- ## {heading}" for heading in headings)
    lines.append("")
    return lines


def _dataset_context(total: int, included: Sequence[FindingView]) -> list[str]:
    lines = ["### Dataset Context"]
    if total == 0:
        lines.append(
            "No findings were provided. Outline what information would be required to proceed.",
        )
        lines.append("")
        return lines

    tool_names = sorted({item.tool_name for item in included if item.tool_name.strip()})
    data_types = sorted({item.data_type.strip() or "Unspecified" for item in included})
    lines.extend(
        [
            f"- Total findings available: {total}",
            f"- Findings included in prompt: {len(included)} (cap: {MAX_FINDINGS_INCLUDED})",
            f"- Data types represented: {', '.join(data_types)}",
            f"- Source tools: {', '.join(tool_names)}",
        ],
    )
    if total > len(included):
        lines.append(
            f"- Note: {total - len(included)} findings beyond the cap were left out.",
        )
    lines.extend(
        [
            "",
            "Focus on the substance of the findings rather than reiterating this metadata.",
            "",
        ],
    )
    return lines


def _grouped_findings(included: Sequence[FindingView]) -> list[str]:
    lines = ["### Normalised Findings"]
    if not included:
        lines.append(
            "- No findings supplied. Provide guidance on next steps to collect baseline "
            "intelligence.",
        )
        return lines

    keyed = sorted(included, key=_group_key)
    for key, group in groupby(keyed, key=_group_key):
        lines.append(f"#### {key}")
        lines.extend(_finding_bullet(item) for item in group)
        lines.append("")
    return lines


def _group_key(finding: FindingView) -> str:
    return finding.data_type.strip() or "Uncategorised"


def _finding_bullet(finding: FindingView) -> str:
    if finding.summary and finding.summary.strip():
        text = _truncate(finding.summary, FINDING_TEXT_MAX_CHARS)
    elif finding.raw_data.strip():
        text = _truncate(finding.raw_data, FINDING_TEXT_MAX_CHARS)
    else:
        text = "(no summary provided)"
    collected = to_utc_aware_datetime(finding.collected_at).strftime("%Y-%m-%d %H:%M")
    return f"- **{finding.tool_name}** ({collected} UTC): {text}"


def _truncate(value: str, max_chars: int) -> str:
    if len(value) <= max_chars:
        return value
    return f"{value[:max_chars]}…"
