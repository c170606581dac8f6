# splice.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional

from .converter import FeatureDoc, TestGenerator
from .model import SCENARIO, STEP, Step
from .ui.console import get_console

# ---------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------

@dataclass
class StepNotFoundAfterEdit(LookupError):
    """
    The edited code no longer contains a step with the original
    keyword/value/scenario, so the edit cannot be tied back to it.
    """
    keyword: str
    value: str
    scenario: str

    def __str__(self) -> str:
        return f"step not found after edit: {self.keyword} {self.value} (in {self.scenario or 'no scenario'})"


class StepNotEditable(ValueError):
    """Raised when selecting a Feature or Scenario node."""
    pass


class UnknownStep(KeyError):
    """Raised when a step id is not in the compiled step list."""
    pass


class NoStepSelected(RuntimeError):
    """Raised when applying an edit before selecting a step."""
    pass


class StepEditOutOfBounds(ValueError):
    """Raised when edited text holds more than the selected step block."""
    pass


# ---------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------

def strip_blank_lines(text: str) -> str:
    """Remove every whitespace-only line."""
    return "\n".join(line for line in text.splitlines() if line.strip())


def trim_blank_edges(text: str) -> str:
    """Drop blank lines at the start and end; interior blank lines stay."""
    lines = text.splitlines()
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    return "\n".join(lines)


@dataclass(frozen=True)
class Selection:
    step: Step
    code: str             # the step's own block
    scenario_code: str    # the enclosing scenario, for context

    def to_dict(self) -> Dict[str, object]:
        return {"step": self.step.to_dict(), "code": self.code, "scenarioCode": self.scenario_code}


# ---------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------

class StepSpliceEngine:
    """
    Edits one feature's generated test code a step at a time.

    compile -> select(step_id) -> apply_edit(text). After every edit the
    test code is regenerated from the feature text, so the code and the
    step list never drift apart.
    """

    def __init__(
        self,
        feature_text: str,
        test_code: Optional[str] = None,
        generator: Optional[TestGenerator] = None,
    ):
        self.feature_text = feature_text
        self.test_code = test_code or ""
        self.generator = generator or TestGenerator()
        self.feature: Optional[FeatureDoc] = None
        self.steps: List[Step] = []
        self.selection: Optional[Selection] = None

    def compile(self) -> List[Step]:
        """Parse the feature and (re)derive the step list from the held test code."""
        self.feature = self.generator.compile_feature(self.feature_text)
        if not self.test_code.strip():
            self.test_code = self.generator.generate([], self.feature_text)
        self.steps = self.generator.compile_steps(self.test_code)
        self.selection = None
        return self.steps

    def _ensure_compiled(self) -> None:
        if self.feature is None:
            self.compile()

    def get_step(self, step_id: str) -> Step:
        self._ensure_compiled()
        for step in self.steps:
            if step.step_id == step_id:
                return step
        raise UnknownStep(step_id)

    def select(self, step_id: str) -> Selection:
        """
        Select a step for editing.

        Raises:
            UnknownStep: no step with that id
            StepNotEditable: the id names a Feature or Scenario node
        """
        step = self.get_step(step_id)
        if not step.editable:
            raise StepNotEditable(f"{step.keyword} nodes cannot be edited individually")

        scenario = next(
            (s for s in self.steps
             if s.kind == SCENARIO and s.start <= step.start and step.end <= s.end),
            None,
        )
        scenario_code = (
            trim_blank_edges(self.test_code[scenario.start:scenario.end]) if scenario else ""
        )
        self.selection = Selection(
            step=step,
            code=trim_blank_edges(self.test_code[step.start:step.end]),
            scenario_code=scenario_code,
        )
        return self.selection

    def apply_edit(self, text: str) -> str:
        """
        Splice `text` over the selected step, re-derive the steps, and
        regenerate the test code. Returns the new code.

        Raises:
            NoStepSelected: select() was not called first
            StepNotFoundAfterEdit: the edit changed the step's identity
            StepEditOutOfBounds: text before or after the step block
            FeatureParseError: the edited code cannot be read back
        """
        if self.selection is None:
            raise NoStepSelected("select a step before applying an edit")
        original = self.selection.step
        code = self.test_code

        edit = strip_blank_lines(text).rstrip()
        spliced = code[:original.start] + edit + code[original.end:]
        fresh = self.generator.compile_steps(spliced)
        match = self._locate(fresh, original)
        if match.start != original.start or match.end != original.start + len(edit):
            raise StepEditOutOfBounds(
                "edit must contain exactly one step block, with nothing before or after it"
            )

        # only the edited step takes new source; siblings keep what they had
        self.steps = [
            replace(s, source=match.source) if s.step_id == original.step_id else s
            for s in self.steps
        ]
        self._regenerate()
        get_console().print_debug(f"Applied edit to step {original.step_id} ({original.keyword} {original.value})")
        return self.test_code

    def refresh(self) -> str:
        """Recompile and regenerate without an edit."""
        self._ensure_compiled()
        self._regenerate()
        return self.test_code

    def _regenerate(self) -> None:
        self.test_code = self.generator.generate(self.steps, self.feature_text)
        self.steps = self.generator.compile_steps(self.test_code)
        self.selection = None

    def _locate(self, fresh: List[Step], original: Step) -> Step:
        same = [s for s in fresh if s.kind == STEP and s.identity == original.identity]
        if not same:
            raise StepNotFoundAfterEdit(original.keyword, original.value, original.scenario)
        for s in same:
            if s.step_id == original.step_id:
                return s
        # no id marker survived: pair duplicates by their order
        held = [s.step_id for s in self.steps if s.kind == STEP and s.identity == original.identity]
        ordinal = held.index(original.step_id) if original.step_id in held else 0
        return same[ordinal] if ordinal < len(same) else same[0]


# ---------------------------------------------------------------------
# Multi-feature propagation
# ---------------------------------------------------------------------

@dataclass
class EditReport:
    index: int
    tests: Dict[int, str] = field(default_factory=dict)    # feature index -> new code
    errors: Dict[int, str] = field(default_factory=dict)   # feature index -> error

    def to_dict(self) -> Dict[str, object]:
        return {
            "index": self.index,
            "tests": {str(k): v for k, v in self.tests.items()},
            "errors": {str(k): v for k, v in self.errors.items()},
        }


def apply_across(
    engines: Mapping[int, StepSpliceEngine],
    index: int,
    step_id: str,
    text: str,
) -> EditReport:
    """
    Apply an edit to feature `index`, then refresh every other feature.

    The edited feature's errors propagate to the caller. A failure while
    refreshing another feature is recorded in the report and leaves that
    feature out of `tests`, so its stored code stays as it was.
    """
    report = EditReport(index=index)
    target = engines[index]
    target.select(step_id)
    report.tests[index] = target.apply_edit(text)

    console = get_console()
    for other_index, engine in engines.items():
        if other_index == index:
            continue
        try:
            report.tests[other_index] = engine.refresh()
        except Exception as e:
            report.errors[other_index] = str(e) or type(e).__name__
            title = engine.feature.title if engine.feature else f"feature {other_index}"
            console.print_feature_failed(other_index, title, report.errors[other_index])
    return report
