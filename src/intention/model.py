# model.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class RepoRef:
    """A GitHub repository reference: owner/repo at a branch."""
    owner: str
    repo: str
    branch: str = "main"

    def with_branch(self, branch: str | None) -> RepoRef:
        if not branch:
            return self
        return replace(self, branch=branch)


@dataclass
class StoredTest:
    """
    One feature block and the test code generated for it.

    The position in the stored list is the feature's identity; the title is
    always derived from the current feature text.
    """
    feature: str
    feature_title: str
    tests: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> StoredTest:
        """Create a StoredTest from a session payload entry, normalising bad fields."""
        if not isinstance(data, dict):
            data = {}
        feature = data.get("feature")
        title = data.get("featureTitle")
        tests = data.get("tests")
        return cls(
            feature=feature if isinstance(feature, str) else "",
            feature_title=title if isinstance(title, str) else "Feature",
            tests=tests if isinstance(tests, str) else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"feature": self.feature, "featureTitle": self.feature_title}
        if self.tests is not None:
            data["tests"] = self.tests
        return data

    @property
    def has_tests(self) -> bool:
        return bool(self.tests and self.tests.strip())


# Step kinds produced by the converter
FEATURE = "feature"
SCENARIO = "scenario"
STEP = "step"


@dataclass(frozen=True)
class StepSource:
    """Source fragments linked to a step inside generated test code."""
    statement: str                           # full text of the step block
    body: str = ""                           # text between the block braces
    imports: Tuple[str, ...] = ()            # module-level import lines


@dataclass
class Step:
    """
    A node of generated test code: a feature, a scenario or a single step.

    Identity across re-derivation is (keyword, value, scenario); offsets move
    with every edit so they are never used to match steps.
    """
    kind: str
    keyword: str
    value: str
    scenario: str
    start: int
    end: int
    step_id: str
    source: Optional[StepSource] = field(default=None, compare=False)

    @property
    def identity(self) -> Tuple[str, str, str]:
        return (self.keyword, self.value, self.scenario)

    @property
    def editable(self) -> bool:
        return self.kind == STEP

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.step_id,
            "kind": self.kind,
            "keyword": self.keyword,
            "value": self.value,
            "scenario": self.scenario,
            "start": self.start,
            "end": self.end,
        }
