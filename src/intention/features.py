# features.py
from __future__ import annotations

import re
from typing import List

# Feature blocks every analysis result must contain, in this order.
FEATURE_ORDER = [
    "End-to-End Summary",
    "Execution Details",
    "Edge Cases & Diagnostics",
]

_FENCE = re.compile(r"^```")
_FEATURE_LINE = re.compile(r"^\s*Feature\s*:\s*(.*)$")
_SCENARIO_LINE = re.compile(r"^\s*(Scenario Outline|Scenario Template|Scenario|Example)\s*:\s*(.*)$")
_EXAMPLES_LINE = re.compile(r"^\s*(Examples|Scenarios)\s*:")
_STEP_LINE = re.compile(r"^\s*(Given|When|Then|And|But)\s+(.*)$")
_PLACEHOLDER = re.compile(r"<[^>]+>")
_LITERAL = re.compile(r"\"[^\"]*\"|'[^']*'|(?<![\w.])-?\d+(?:\.\d+)?(?![\w.])")


def sanitize_gherkin(text: str) -> str:
    """Remove Markdown code fence lines (``` or ```gherkin) and trim."""
    lines = [line for line in text.splitlines() if not _FENCE.match(line.strip())]
    return "\n".join(lines).strip()


def split_features(text: str) -> List[str]:
    """
    Split Gherkin text into one block per Feature header.

    Tags and comments directly above a header travel with that header.
    """
    features: List[str] = []
    buffer: List[str] = []
    for line in text.splitlines():
        if _FEATURE_LINE.match(line):
            carry: List[str] = []
            while buffer and _is_preamble(buffer[-1]):
                carry.insert(0, buffer.pop())
            if buffer:
                features.append("\n".join(buffer).strip())
            buffer = carry
        buffer.append(line)
    if buffer:
        features.append("\n".join(buffer).strip())
    return [f for f in features if f]


def _is_preamble(line: str) -> bool:
    # tags, comments and blank lines that precede a header belong to it
    s = line.strip()
    return not s or s.startswith("#") or s.startswith("@")


def feature_title(text: str) -> str:
    for line in text.splitlines():
        m = _FEATURE_LINE.match(line)
        if m and m.group(1).strip():
            return f"Feature: {m.group(1).strip()}"
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return "Feature"


def _strip_tags(name: str) -> str:
    return re.sub(r"\s@\S+", "", " " + name).strip()


def check_conformance(text: str) -> List[str]:
    """
    Report where Gherkin output breaks the outline/examples convention.

    Returns a list of human-readable issues; empty means conformant.
    """
    issues: List[str] = []
    names = [
        _strip_tags(m.group(1))
        for m in (_FEATURE_LINE.match(line) for line in text.splitlines())
        if m
    ]
    if len(names) != len(FEATURE_ORDER) or any(
        not name.startswith(expected) for name, expected in zip(names, FEATURE_ORDER)
    ):
        issues.append(
            "expected features "
            + ", ".join(repr(n) for n in FEATURE_ORDER)
            + f" in order, found {names!r}"
        )

    current: str | None = None
    has_examples = False

    def close_scenario() -> None:
        if current is not None and not has_examples:
            issues.append(f"Scenario Outline {current!r} has no Examples table")

    for line in text.splitlines():
        if _FEATURE_LINE.match(line):
            close_scenario()
            current = None
            continue
        m = _SCENARIO_LINE.match(line)
        if m:
            close_scenario()
            keyword, name = m.group(1), m.group(2).strip()
            if keyword in ("Scenario", "Example"):
                issues.append(f"Scenario {name!r} is not a Scenario Outline")
                current = None
            else:
                current, has_examples = name, False
            continue
        if _EXAMPLES_LINE.match(line):
            has_examples = True
            continue
        m = _STEP_LINE.match(line)
        if m:
            step = _PLACEHOLDER.sub("", m.group(2))
            if _LITERAL.search(step):
                issues.append(f"Step {m.group(0).strip()!r} has an inline literal")
    close_scenario()
    return issues
