# session.py
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Protocol

import redis.asyncio as redis

from .features import feature_title, sanitize_gherkin, split_features
from .model import Step, StoredTest
from .settings import SESSION_TTL_SECONDS
from .splice import EditReport, Selection, StepSpliceEngine, apply_across

PAYLOAD_KEY = "gherkinPayload"
TESTS_KEY = "generatedTests"
RESULT_KEY = "resultCache"


class SessionStore(Protocol):
    """Key/value storage for one browser session's artifacts."""

    async def get(self, session_id: str, key: str) -> Optional[str]: ...

    async def set(self, session_id: str, key: str, value: str) -> None: ...

    async def delete(self, session_id: str, *keys: str) -> None: ...


class MemorySessionStore:
    """Process-local store; contents vanish with the server."""

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, str]] = {}

    async def get(self, session_id: str, key: str) -> Optional[str]:
        return self._data.get(session_id, {}).get(key)

    async def set(self, session_id: str, key: str, value: str) -> None:
        self._data.setdefault(session_id, {})[key] = value

    async def delete(self, session_id: str, *keys: str) -> None:
        bucket = self._data.get(session_id)
        if bucket is None:
            return
        for key in keys:
            bucket.pop(key, None)
        if not bucket:
            del self._data[session_id]


class RedisSessionStore:
    """Redis-backed store; every write refreshes the session expiry."""

    def __init__(self, url: str, ttl_seconds: int = SESSION_TTL_SECONDS):
        self.r = redis.from_url(url, decode_responses=True)
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def session_key(session_id: str, key: str) -> str:
        return f"intention:session:{session_id}:{key}"

    async def get(self, session_id: str, key: str) -> Optional[str]:
        return await self.r.get(self.session_key(session_id, key))

    async def set(self, session_id: str, key: str, value: str) -> None:
        await self.r.set(self.session_key(session_id, key), value, ex=self.ttl_seconds)

    async def delete(self, session_id: str, *keys: str) -> None:
        if keys:
            await self.r.delete(*(self.session_key(session_id, k) for k in keys))


class UnknownFeature(IndexError):
    """Raised when a feature index is outside the stored list."""
    pass


class TestSession:
    """
    Read/write access to one session's Gherkin payload, stored tests and
    result cache, plus the step editing workflow on top of them.
    """

    __test__ = False  # not a pytest class

    def __init__(self, store: SessionStore, session_id: str):
        self.store = store
        self.session_id = session_id

    # ---- raw payload ----

    async def read_payload(self) -> str:
        return await self.store.get(self.session_id, PAYLOAD_KEY) or ""

    async def load_payload(self, gherkin: str) -> List[StoredTest]:
        """Store new Gherkin and start one StoredTest per feature block."""
        cleaned = sanitize_gherkin(gherkin)
        tests = [StoredTest(feature=f, feature_title=feature_title(f)) for f in split_features(cleaned)]
        await self.store.set(self.session_id, PAYLOAD_KEY, cleaned)
        await self.write_tests(tests)
        return tests

    # ---- stored tests ----

    async def read_tests(self) -> List[StoredTest]:
        raw = await self.store.get(self.session_id, TESTS_KEY)
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return []
        if not isinstance(parsed, list):
            return []
        return [StoredTest.from_dict(entry) for entry in parsed]

    async def write_tests(self, tests: List[StoredTest]) -> None:
        await self.store.set(self.session_id, TESTS_KEY, json.dumps([t.to_dict() for t in tests]))

    async def _feature(self, index: int) -> tuple[List[StoredTest], StoredTest]:
        tests = await self.read_tests()
        if not 0 <= index < len(tests):
            raise UnknownFeature(f"no feature at index {index}")
        return tests, tests[index]

    async def update_feature(self, index: int, text: str) -> StoredTest:
        """Replace a feature's text in place; its old tests no longer apply."""
        tests, _ = await self._feature(index)
        tests[index] = StoredTest(feature=text, feature_title=feature_title(text))
        await self.write_tests(tests)
        return tests[index]

    async def generate_tests(self, index: int) -> StoredTest:
        tests, entry = await self._feature(index)
        engine = StepSpliceEngine(entry.feature)
        engine.compile()
        entry.tests = engine.test_code
        entry.feature_title = feature_title(entry.feature)
        await self.write_tests(tests)
        return entry

    async def steps(self, index: int) -> List[Step]:
        _, entry = await self._feature(index)
        engine = StepSpliceEngine(entry.feature, entry.tests)
        return engine.compile()

    async def select(self, index: int, step_id: str) -> Selection:
        _, entry = await self._feature(index)
        engine = StepSpliceEngine(entry.feature, entry.tests)
        return engine.select(step_id)

    async def apply_edit(self, index: int, step_id: str, text: str) -> EditReport:
        """
        Apply a step edit to feature `index` and refresh every other feature
        that already has tests. Successful results are stored together;
        features that failed keep their previous tests.
        """
        tests, _ = await self._feature(index)
        engines = {
            i: StepSpliceEngine(t.feature, t.tests)
            for i, t in enumerate(tests)
            if i == index or t.has_tests
        }
        report = apply_across(engines, index, step_id, text)
        for i, code in report.tests.items():
            tests[i].tests = code
            tests[i].feature_title = feature_title(tests[i].feature)
        await self.write_tests(tests)
        return report

    async def aggregated_tests(self) -> str:
        """All non-empty test blocks, joined by a blank line."""
        blocks = [(t.tests or "").strip() for t in await self.read_tests()]
        return "\n\n".join(b for b in blocks if b)

    # ---- result cache ----

    async def read_result(self) -> Optional[Dict[str, Any]]:
        raw = await self.store.get(self.session_id, RESULT_KEY)
        if not raw:
            return None
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None

    async def write_result(self, repo: str, branch: str, gherkin: str) -> None:
        data = {"repo": repo, "branch": branch, "gherkin": gherkin}
        await self.store.set(self.session_id, RESULT_KEY, json.dumps(data))

    async def clear(self) -> None:
        await self.store.delete(self.session_id, PAYLOAD_KEY, TESTS_KEY, RESULT_KEY)
