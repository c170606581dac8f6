"""Tests for Gherkin text helpers."""

from intention.features import (
    FEATURE_ORDER,
    check_conformance,
    feature_title,
    sanitize_gherkin,
    split_features,
)


class TestSanitizeGherkin:
    def test_removes_fences(self):
        text = "```gherkin\nFeature: A\n  Scenario: b\n```\n"
        assert sanitize_gherkin(text) == "Feature: A\n  Scenario: b"

    def test_plain_text_untouched(self):
        assert sanitize_gherkin("  Feature: A  ") == "Feature: A"


class TestSplitFeatures:
    """Tests for split_features."""

    def test_three_blocks(self, three_features):
        blocks = split_features(three_features)
        assert len(blocks) == 3
        assert [feature_title(b) for b in blocks] == [f"Feature: {name}" for name in FEATURE_ORDER]

    def test_tags_travel_with_their_feature(self, three_features):
        blocks = split_features(three_features)
        assert blocks[0].startswith("@e2e @summary\nFeature: End-to-End Summary")
        assert blocks[1].startswith("@unit @insights\nFeature: Execution Details")
        assert "@unit @insights" not in blocks[0]

    def test_comment_above_header(self):
        text = "Feature: A\n  Scenario: a\n\n# Insight: second\nFeature: B\n"
        blocks = split_features(text)
        assert blocks == ["Feature: A\n  Scenario: a", "# Insight: second\nFeature: B"]

    def test_no_features(self):
        assert split_features("") == []

    def test_text_without_header(self):
        assert split_features("just words") == ["just words"]


class TestFeatureTitle:
    def test_from_header(self):
        assert feature_title("@tag\nFeature:   Login  \n") == "Feature: Login"

    def test_falls_back_to_first_line(self):
        assert feature_title("\n  something else\n") == "something else"

    def test_empty(self):
        assert feature_title("") == "Feature"


class TestCheckConformance:
    """Tests for check_conformance."""

    def test_conformant(self, three_features):
        assert check_conformance(three_features) == []

    def test_wrong_order(self, three_features):
        blocks = split_features(three_features)
        swapped = "\n\n".join([blocks[1], blocks[0], blocks[2]])
        issues = check_conformance(swapped)
        assert len(issues) == 1
        assert "in order" in issues[0]

    def test_plain_scenario(self):
        text = "Feature: End-to-End Summary\n  Scenario: plain\n    Given a thing\n"
        issues = check_conformance(text)
        assert any("'plain' is not a Scenario Outline" in i for i in issues)

    def test_outline_without_examples(self):
        text = "Feature: End-to-End Summary\n  Scenario Outline: bare\n    Given <input>\n"
        issues = check_conformance(text)
        assert any("'bare' has no Examples table" in i for i in issues)

    def test_inline_literals(self):
        text = (
            "Feature: End-to-End Summary\n"
            "  Scenario Outline: literal\n"
            '    Given the value "hello"\n'
            "    When adding 42\n"
            "    Then it returns <expected>\n"
            "    Examples:\n"
            "      | expected |\n"
            "      | 1        |\n"
        )
        issues = check_conformance(text)
        literal = [i for i in issues if "inline literal" in i]
        assert len(literal) == 2

    def test_placeholders_are_not_literals(self):
        text = (
            "Feature: End-to-End Summary\n"
            "  Scenario Outline: ok\n"
            "    Given step v2 with <input>\n"
            "    Examples:\n"
            "      | input |\n"
            "      | 1     |\n"
        )
        assert not [i for i in check_conformance(text) if "inline literal" in i]
