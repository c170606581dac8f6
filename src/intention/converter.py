# converter.py
# Gherkin <-> Jest conversion.
#
# Feature text is parsed with gherkin-official; test code is rendered as one
# `describe` per Feature and Scenario and one `await step(...)` block per
# Gherkin step. compile_steps() reads that layout back into a flat Step list
# with source offsets, which is what the splice engine edits against.

from __future__ import annotations

import json
import re
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from gherkin.errors import ParserError
from gherkin.parser import Parser
from gherkin.token_scanner import TokenScanner

from .model import FEATURE, SCENARIO, STEP, Step, StepSource

STEP_HELPER = (
    "const step = async (keyword: string, text: string, fn: () => Promise<void> | void) => {\n"
    "  await fn();\n"
    "};"
)

_DESCRIBE_RE = re.compile(
    r'^[ \t]*describe\((?P<title>"(?:[^"\\\n]|\\.)*")\s*,\s*\(\)\s*=>\s*\{[ \t]*$',
    re.M,
)
_STEP_RE = re.compile(
    r'^[ \t]*await step\((?P<keyword>"(?:[^"\\\n]|\\.)*")\s*,\s*(?P<value>"(?:[^"\\\n]|\\.)*")'
    r"\s*,\s*async\s*\(\)\s*=>\s*\{",
    re.M,
)
_MARKER_RE = re.compile(r"^[ \t]*// step-id: (?P<id>\S+)[ \t]*$")
_IMPORT_RE = re.compile(r"^(?:import|export)\b.*$", re.M)
_SCENARIO_KEYWORDS = ("Scenario Outline", "Scenario Template", "Scenario", "Example", "Rule")


class FeatureParseError(ValueError):
    """Raised when feature text is not valid Gherkin."""
    pass


# ---------------------------------------------------------------------
# Feature model (parse result)
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class StepDoc:
    keyword: str
    text: str


@dataclass
class ScenarioDoc:
    keyword: str
    name: str
    steps: List[StepDoc] = field(default_factory=list)
    examples: List[Dict[str, str]] = field(default_factory=list)

    @property
    def title(self) -> str:
        return f"{self.keyword}: {self.name}"


@dataclass
class FeatureDoc:
    keyword: str
    name: str
    tags: List[str] = field(default_factory=list)
    scenarios: List[ScenarioDoc] = field(default_factory=list)

    @property
    def title(self) -> str:
        return f"{self.keyword}: {self.name}"

    @property
    def step_count(self) -> int:
        return sum(len(s.steps) for s in self.scenarios)


def _examples(scenario: dict) -> List[Dict[str, str]]:
    rows: List[Dict[str, str]] = []
    for block in scenario.get("examples") or []:
        header = block.get("tableHeader")
        if not header:
            continue
        columns = [c.get("value", "") for c in header.get("cells", [])]
        for row in block.get("tableBody") or []:
            values = [c.get("value", "") for c in row.get("cells", [])]
            rows.append(dict(zip(columns, values)))
    return rows


def _step_docs(steps: Iterable[dict]) -> List[StepDoc]:
    return [StepDoc(keyword=s.get("keyword", "").strip(), text=s.get("text", "")) for s in steps]


def _scenarios(children: Iterable[dict], background: Sequence[StepDoc] = ()) -> List[ScenarioDoc]:
    scenarios: List[ScenarioDoc] = []
    shared = list(background)
    for child in children:
        if "background" in child:
            shared = shared + _step_docs(child["background"].get("steps") or [])
        elif "rule" in child:
            scenarios.extend(_scenarios(child["rule"].get("children") or [], shared))
        elif "scenario" in child:
            sc = child["scenario"]
            scenarios.append(ScenarioDoc(
                keyword=sc.get("keyword", "Scenario").strip(),
                name=sc.get("name", "").strip(),
                steps=shared + _step_docs(sc.get("steps") or []),
                examples=_examples(sc),
            ))
    return scenarios


# ---------------------------------------------------------------------
# Test code scanning
# ---------------------------------------------------------------------

def _block_end(code: str, open_brace: int) -> int:
    """
    Return the index just past the brace matching `code[open_brace]`.

    String literals and comments are skipped so braces inside them do not
    count.
    """
    depth = 0
    i = open_brace
    n = len(code)
    while i < n:
        ch = code[i]
        if ch in "\"'`":
            i += 1
            while i < n and code[i] != ch:
                i += 2 if code[i] == "\\" else 1
        elif code.startswith("//", i):
            nl = code.find("\n", i)
            i = n if nl == -1 else nl
            continue
        elif code.startswith("/*", i):
            close = code.find("*/", i + 2)
            i = n if close == -1 else close + 2
            continue
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    raise FeatureParseError(f"unbalanced block starting at offset {open_brace}")


def _statement_end(code: str, close: int) -> int:
    # the `);` that closes describe(...) / step(...) belongs to the statement
    i = close
    while i < len(code) and code[i] in ");":
        i += 1
    return i


def _line_start(code: str, index: int) -> int:
    return code.rfind("\n", 0, index) + 1


def _marker_before(code: str, line_start: int) -> Optional[str]:
    if line_start == 0:
        return None
    prev_start = _line_start(code, line_start - 1)
    m = _MARKER_RE.match(code[prev_start:line_start - 1])
    return m.group("id") if m else None


def _split_title(title: str) -> Tuple[str, str]:
    keyword, _, name = title.partition(":")
    return keyword.strip(), name.strip()


def _string_literal(literal: str) -> str:
    """Decode a double-quoted literal; only JSON escapes are accepted."""
    try:
        return json.loads(literal)
    except json.JSONDecodeError as e:
        raise FeatureParseError(f"unsupported string literal {literal}: {e.msg}") from e


def new_step_id() -> str:
    return uuid.uuid4().hex[:8]


# ---------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------

class TestGenerator:
    """Compiles feature text and Jest test code, and renders one from the other."""

    __test__ = False  # not a pytest class

    def __init__(self, indent: str = "  "):
        self.indent = indent

    def compile_feature(self, feature_text: str) -> FeatureDoc:
        """
        Parse Gherkin feature text.

        Raises:
            FeatureParseError: invalid Gherkin or no Feature header
        """
        try:
            document = Parser().parse(TokenScanner(feature_text))
        except ParserError as e:
            raise FeatureParseError(str(e)) from e

        feature = document.get("feature")
        if not feature:
            raise FeatureParseError("no Feature found")

        return FeatureDoc(
            keyword=feature.get("keyword", "Feature").strip(),
            name=feature.get("name", "").strip(),
            tags=[t.get("name", "") for t in feature.get("tags") or []],
            scenarios=_scenarios(feature.get("children") or []),
        )

    def compile_steps(self, test_code: str) -> List[Step]:
        """
        Read generated test code back into a flat list of Feature, Scenario
        and step nodes in source order.

        Step ids come from `// step-id:` marker lines; unmarked steps get a
        fresh id.
        """
        imports = tuple(m.group(0).rstrip() for m in _IMPORT_RE.finditer(test_code))
        nodes: List[Step] = []
        feature_title = ""
        counters: Dict[str, int] = defaultdict(int)
        scopes: List[Step] = []

        headers = [(m.start(), "describe", m) for m in _DESCRIBE_RE.finditer(test_code)]
        headers += [(m.start(), "step", m) for m in _STEP_RE.finditer(test_code)]
        headers.sort(key=lambda h: h[0])

        for start, kind, m in headers:
            brace = m.end() - 1 if kind == "step" else test_code.rindex("{", m.start(), m.end())
            close = _block_end(test_code, brace)
            end = _statement_end(test_code, close)
            source = StepSource(
                statement=test_code[start:end],
                body=test_code[brace + 1:close - 1],
                imports=imports,
            )

            if kind == "describe":
                title = _string_literal(m.group("title"))
                keyword, name = _split_title(title)
                if keyword == "Feature":
                    node_kind = FEATURE
                    feature_title = title
                    parent = ""
                elif keyword in _SCENARIO_KEYWORDS:
                    node_kind = SCENARIO
                    parent = feature_title
                else:
                    continue
                counters[node_kind] += 1
                node = Step(
                    kind=node_kind,
                    keyword=keyword,
                    value=name,
                    scenario=parent,
                    start=start,
                    end=end,
                    step_id=f"{node_kind}-{counters[node_kind]}",
                    source=source,
                )
                if node_kind == SCENARIO:
                    scopes.append(node)
            else:
                scenario = next(
                    (s for s in reversed(scopes) if s.start <= start < s.end), None
                )
                node = Step(
                    kind=STEP,
                    keyword=_string_literal(m.group("keyword")),
                    value=_string_literal(m.group("value")),
                    scenario=f"{scenario.keyword}: {scenario.value}" if scenario else "",
                    start=start,
                    end=end,
                    step_id=_marker_before(test_code, start) or new_step_id(),
                    source=source,
                )
            nodes.append(node)
        return nodes

    def generate(self, steps: Sequence[Step], feature_text: str) -> str:
        """
        Render Jest test code for `feature_text`.

        Steps already known from earlier code keep their id and their block
        text; the rest get a pending stub.
        """
        feature = self.compile_feature(feature_text)

        by_identity: Dict[Tuple[str, str, str], List[Step]] = defaultdict(list)
        by_text: Dict[Tuple[str, str], Step] = {}
        imports: Tuple[str, ...] = ()
        for s in steps:
            if s.kind != STEP:
                continue
            by_identity[s.identity].append(s)
            by_text.setdefault((s.keyword, s.value), s)
            if s.source and s.source.imports and not imports:
                imports = s.source.imports
        used: Dict[Tuple[str, str, str], int] = defaultdict(int)

        ind = self.indent
        out: List[str] = []
        if imports:
            out.extend(imports)
            out.append("")
        out.append(STEP_HELPER)
        out.append("")
        out.append(f"describe({_js(feature.title)}, () => {{")

        for sc_idx, scenario in enumerate(feature.scenarios):
            if sc_idx:
                out.append("")
            out.append(f"{ind}describe({_js(scenario.title)}, () => {{")
            out.append(f"{ind * 2}const examples = [")
            for row in scenario.examples or [{}]:
                out.append(f"{ind * 3}{json.dumps(row, ensure_ascii=False)},")
            out.append(f"{ind * 2}];")
            out.append("")
            out.append(f"{ind * 2}test.each(examples)({_js(scenario.name + ' #%#')}, async (example) => {{")

            for st_idx, doc in enumerate(scenario.steps):
                identity = (doc.keyword, doc.text, scenario.title)
                candidates = by_identity.get(identity, [])
                known: Optional[Step] = None
                step_id = new_step_id()
                if used[identity] < len(candidates):
                    # n-th occurrence of a step maps to the n-th known one
                    known = candidates[used[identity]]
                    used[identity] += 1
                    step_id = known.step_id
                elif not candidates:
                    # same step text implemented in another scenario
                    known = by_text.get((doc.keyword, doc.text))

                if st_idx:
                    out.append("")
                step_indent = ind * 3
                out.append(f"{step_indent}// step-id: {step_id}")
                if known is not None and known.source is not None:
                    out.append(known.source.statement)
                else:
                    out.append(
                        f"{step_indent}await step({_js(doc.keyword)}, {_js(doc.text)}, async () => {{"
                    )
                    out.append(f"{step_indent}{ind}// pending")
                    out.append(f"{step_indent}}});")

            out.append(f"{ind * 2}}});")
            out.append(f"{ind}}});")

        out.append("});")
        return "\n".join(out) + "\n"


def _js(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)
