"""Structured prompt builders for the scan and deep-dive steps."""

import json
from typing import List, Optional, Sequence, Tuple

from app.domain.market_data import Segmentation
from segmentation.opportunities import Opportunity
from llm_synthesis.schema import Finding

SCAN_COLUMN_LIMIT = 10
SCAN_SEGMENT_LIMIT = 5
SCAN_OPPORTUNITY_LIMIT = 10

_SCAN_EXAMPLE_OUTPUT = json.dumps(
    {
        "findings": [
            {
                "title": "Retail molecule share lags: BrandX weaker than BrandY",
                "phenomenon": (
                    "In retail, BrandX holds 29.9% of its molecule while BrandY holds "
                    "39.1% of its own, a gap of about 9 points on pdot share."
                ),
            }
        ]
    },
    indent=2,
    ensure_ascii=False,
)

_CAUSE_EXAMPLE_OUTPUT = json.dumps(
    {
        "causes": [
            {
                "problem": "<finding title>",
                "statement": (
                    "**Environment**: ...\n\n**Commercial**: ...\n\n"
                    "**Product**: ...\n\n**Resources**: ..."
                ),
            }
        ]
    },
    indent=2,
    ensure_ascii=False,
)

_SCAN_SYSTEM = """\
You are a senior market analyst studying {brand} and its competitors.

## Scissors gap definition
Between any two comparable entities (brands, dosages, provinces, channels,
periods), a scissors gap is a clear divergence in either the current share
level or the historical growth trend. Focus on gaps that involve {brand}.

Typical kinds:
- same brand, different segments (e.g. {brand} at 10mg vs 20mg)
- same segment, different brands moving in opposite directions
- same molecule and dosage, different price bands or package sizes
- originator brands performing differently in their own molecules

## Merge rule
Two findings are the same finding, and must be merged into one, when they
compare the same entities, in the same channel, on the same share or growth
computation basis.

## Task
1. Scan the data and list candidate scissors gaps.
2. Merge duplicates using the merge rule.
3. Return at most {max_findings} findings, most important first.

## Output rules
- Return only a JSON object, no other text.
- Each finding has exactly "title" and "phenomenon". Do NOT include causes;
  causes are analysed later, after the analyst confirms the findings.
- The phenomenon must cite the actual numbers provided below.

## Example output
```json
{example}
```
"""

_DEEP_DIVE_SYSTEM = """\
You are a senior market analyst explaining the cause of one competitive gap
for {brand}.

## Tools
You MUST query the data with the provided tools before concluding:
- query_grouped_totals: totals per value of a dimension (use value="all"
  first to see the whole distribution, then drill into specific values).
- query_distribution_rate: average distribution rate (WD) for a brand,
  optionally per dosage, package size or province. Compare the same brand
  across dosages to spot distribution gaps.
If the data has no relevant dimension, say so explicitly.

## Analysis path
1. Provinces: is the brand held back by a few provinces, and what do they share?
2. Product: are specific dosages, package sizes or price bands weak, and why?
3. Distribution: does distribution rate explain the gap?

## Output
Return a JSON object for this single finding:
```json
{example}
```
The statement covers environment, commercial, product and resource factors,
one paragraph each separated by a blank line, and cites the query results.
"""


def _fmt_amount(value: float) -> str:
    return f"{value:,.0f}"


class InvestigationPromptBuilder:
    """Builds the scan and deep-dive prompts.

    Every method is deterministic for the same inputs.
    """

    def build_scan_prompt(
        self,
        segmentation: Segmentation,
        *,
        brand: str,
        x_label: str,
        y_label: str,
        record_count: int,
        brand_totals: Sequence[Tuple[str, float]] = (),
        opportunities: Sequence[Opportunity] = (),
        max_findings: int = 5,
        user_feedback: Optional[str] = None,
    ) -> Tuple[str, str]:
        """Build the (system, user) prompt pair for the scan step.

        The data summary covers the top columns and their top segments,
        brand totals and the largest opportunity cells.
        """
        system = _SCAN_SYSTEM.format(
            brand=brand,
            max_findings=max_findings,
            example=_SCAN_EXAMPLE_OUTPUT,
        )

        lines: List[str] = [
            "## Data overview",
            f"- Records: {record_count}",
            f"- X dimension: {x_label}",
            f"- Y dimension: {y_label}",
            f"- Brand under analysis: {brand}",
            "",
            "## Segmentation summary",
        ]
        for column in segmentation.columns[:SCAN_COLUMN_LIMIT]:
            lines.append(f"### {x_label}: {column.category_x}")
            lines.append(f"- Share of total: {column.total_share_pct:.2f}%")
            lines.append(f"- Total measure: {_fmt_amount(column.total_measure)}")
            lines.append(f"- {y_label} breakdown:")
            for segment in column.segments[:SCAN_SEGMENT_LIMIT]:
                lines.append(
                    f"  - {segment.category_y}: {segment.share_pct:.2f}% "
                    f"({_fmt_amount(segment.measure)})"
                )
            lines.append("")

        if brand_totals:
            lines.append("## Brand totals")
            for name, total in brand_totals:
                lines.append(f"- {name}: {_fmt_amount(total)}")
            lines.append("")

        if opportunities:
            lines.append("## Largest cells (share of the whole market)")
            for item in list(opportunities)[:SCAN_OPPORTUNITY_LIMIT]:
                lines.append(
                    f"- {item.category_x} × {item.category_y}: {item.market_share_pct:.2f}%"
                )
            lines.append("")

        if user_feedback:
            lines.append("## Analyst feedback")
            lines.append(user_feedback.strip())
            lines.append("")

        lines.append(
            "Scan the data above for scissors gaps, merge duplicates, and return "
            f"at most {max_findings} findings as JSON with title and phenomenon only."
        )
        return system, "\n".join(lines)

    def build_deep_dive_messages(
        self,
        finding: Finding,
        *,
        brand: str,
        user_feedback: Optional[str] = None,
    ) -> List[dict]:
        """Build the opening transcript for one finding's deep-dive."""
        system = _DEEP_DIVE_SYSTEM.format(brand=brand, example=_CAUSE_EXAMPLE_OUTPUT)
        user_lines = [
            "Explain the cause of this finding:",
            "",
            f"Title: {finding.title}",
            f"Phenomenon: {finding.phenomenon}",
            "",
            "Analyse only this finding. Query the data first, then answer with JSON only.",
        ]
        if user_feedback:
            user_lines.extend(["", "Analyst feedback:", user_feedback.strip()])
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": "\n".join(user_lines)},
        ]

    def build_tool_followup(self, finding: Finding, results_summary: str) -> str:
        """Instruction appended after a batch of tool results."""
        return (
            "The query results are back:\n"
            f"{results_summary}\n\n"
            "Continue the analysis based on these results. When you have enough "
            "evidence, answer with JSON only, for this finding only: "
            f'{{"causes": [{{"problem": {json.dumps(finding.title, ensure_ascii=False)}, '
            '"statement": "..."}]}'
        )

    def build_json_reminder(self) -> str:
        """Instruction sent when a reply carried no JSON answer."""
        return (
            "Your reply did not contain the JSON answer. Respond now with only "
            'the JSON object: {"causes": [{"problem": "...", "statement": "..."}]}'
        )
