"""Markdown section parser for generated completions."""

from __future__ import annotations

import re

from osint_ai.jobs.models import (
    MARKDOWN_SECTIONS_V1,
    AiJobType,
    StructuredResult,
    StructuredResultSection,
)
from osint_ai.jobs.prompts import section_headings

PARSER_VERSION = "1.0.0"

_HEADING_RE = re.compile(r"^##\s+(.*)$")
_TOKEN_RE = re.compile(r"[^\W_]+")


def parse_completion(job_type: str, raw_text: str | None) -> StructuredResult:
    """Split raw generated Markdown into keyed sections.

    Text before the first ``## `` heading is not kept. When the text has no
    headings at all it becomes a single ``full_response`` section, and blank
    text becomes a single ``empty_response`` section. Expected section keys that
    are absent are listed in ``metadata["missingSections"]``.
    """

    result = StructuredResult(
        format_version=MARKDOWN_SECTIONS_V1,
        metadata={
            "jobType": job_type,
            "parserVersion": PARSER_VERSION,
            "template": _template_name(job_type),
        },
    )
    expected_keys = expected_section_keys(job_type)

    if raw_text is None or not raw_text.strip():
        result.sections.append(
            StructuredResultSection(key="empty_response", heading="Empty Response", content=""),
        )
        result.metadata["missingSections"] = ",".join(expected_keys)
        return result

    normalised = raw_text.replace("\r\n", "\n")
    sections: list[StructuredResultSection] = []
    heading: str | None = None
    buffer: list[str] = []

    for raw_line in normalised.split("\n"):
        line = raw_line.rstrip()
        match = _HEADING_RE.match(line)
        if match is None:
            buffer.append(line)
            continue
        if heading is not None:
            sections.append(_section(job_type, heading, buffer))
        heading = match.group(1).strip()
        buffer = []
    if heading is not None:
        sections.append(_section(job_type, heading, buffer))

    if not sections:
        sections.append(
            StructuredResultSection(
                key="full_response",
                heading="Full Response",
                content=normalised.strip(),
            ),
        )
    result.sections = sections

    present = {section.key for section in sections}
    missing = [key for key in expected_keys if key not in present]
    if missing:
        result.metadata["missingSections"] = ",".join(missing)
    return result


def expected_section_keys(job_type: str) -> list[str]:
    return [normalize_heading(job_type, heading) for heading in section_headings(job_type)]


def normalize_heading(job_type: str, heading: str) -> str:
    """Map a heading to its stable snake_case key."""

    tokens = _TOKEN_RE.findall(heading.lower().replace("&", " and "))
    if not tokens:
        return _fallback_key(job_type)
    return "_".join(tokens)


def _section(job_type: str, heading: str, buffer: list[str]) -> StructuredResultSection:
    return StructuredResultSection(
        key=normalize_heading(job_type, heading),
        heading=heading,
        content="\n".join(buffer).strip(),
    )


def _template_name(job_type: str) -> str:
    return "inference_v1" if job_type == AiJobType.INFERENCE.value else "analysis_v1"


def _fallback_key(job_type: str) -> str:
    return "inference_section" if job_type == AiJobType.INFERENCE.value else "analysis_section"
