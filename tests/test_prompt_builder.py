"""
tests/test_prompt_builder.py

Unit tests for the scan and deep-dive prompt text.
"""

from __future__ import annotations

import pytest

from llm_synthesis.prompt_builder import InvestigationPromptBuilder
from llm_synthesis.schema import Finding
from segmentation.aggregator import aggregate


def _flat(text: str) -> str:
    return " ".join(text.split())


@pytest.fixture()
def builder() -> InvestigationPromptBuilder:
    return InvestigationPromptBuilder()


@pytest.fixture()
def scan_prompt(builder, pharma_snapshot):
    segmentation = aggregate(pharma_snapshot.records, None, "dimension1", "dimension2")
    return builder.build_scan_prompt(
        segmentation,
        brand="BrandX",
        x_label="品牌",
        y_label="剂量",
        record_count=len(pharma_snapshot.records),
        brand_totals=[("BrandY", 700.0), ("BrandX", 300.0)],
        max_findings=4,
        user_feedback="Focus on 20mg.",
    )


class TestScanPrompt:
    def test_merge_rule_names_every_criterion(self, scan_prompt) -> None:
        system = _flat(scan_prompt[0])

        assert "## Merge rule" in system
        assert "the same entities" in system
        assert "in the same channel" in system
        assert "on the same share or growth computation basis" in system
        assert "Merge duplicates using the merge rule" in system

    def test_user_prompt_asks_for_merged_findings(self, scan_prompt) -> None:
        user = scan_prompt[1]
        assert "merge duplicates" in user
        assert "at most 4 findings" in user

    def test_system_prompt_is_bound_to_brand_and_limit(self, scan_prompt) -> None:
        system = scan_prompt[0]
        assert "studying BrandX" in system
        assert "at most 4 findings" in system
        assert "Do NOT include causes" in system

    def test_user_prompt_carries_data_and_feedback(self, scan_prompt, pharma_snapshot) -> None:
        user = scan_prompt[1]
        assert f"- Records: {len(pharma_snapshot.records)}" in user
        assert "- BrandY: 700" in user
        assert "## Analyst feedback\nFocus on 20mg." in user

    def test_deterministic(self, builder, pharma_snapshot) -> None:
        segmentation = aggregate(pharma_snapshot.records, None, "dimension1", "dimension2")
        kwargs = dict(brand="BrandX", x_label="品牌", y_label="剂量", record_count=5)
        assert builder.build_scan_prompt(segmentation, **kwargs) == builder.build_scan_prompt(segmentation, **kwargs)


class TestDeepDivePrompt:
    def test_opening_transcript(self, builder) -> None:
        finding = Finding(title="20mg gap", phenomenon="BrandX holds 30% of 20mg")
        system, user = builder.build_deep_dive_messages(finding, brand="BrandX")

        assert system["role"] == "system"
        assert "query_distribution_rate" in system["content"]
        assert "Title: 20mg gap" in user["content"]
        assert "Analyst feedback" not in user["content"]

    def test_feedback_is_appended(self, builder) -> None:
        finding = Finding(title="t", phenomenon="p")
        _, user = builder.build_deep_dive_messages(finding, brand="BrandX", user_feedback=" check Anhui ")
        assert user["content"].endswith("Analyst feedback:\ncheck Anhui")

    def test_tool_followup_names_the_finding(self, builder) -> None:
        followup = builder.build_tool_followup(Finding(title="安徽 gap", phenomenon="p"), "rows: 3")
        assert "rows: 3" in followup
        assert '"problem": "安徽 gap"' in followup
