# analysis/analyzer.py
from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from intention import settings
from intention.features import FEATURE_ORDER, check_conformance

from .api_client import APIError, ResponsesClient

ProgressFn = Callable[[str], None]

TERMINAL_FAILURES = ("failed", "expired", "cancelled")


class AnalysisError(Exception):
    """Raised when the language model service cannot produce Gherkin."""
    pass


# ---------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------

PLAN_PROMPT = " ".join([
    "You are a senior QA engineer and TypeScript expert. Visit the repository and produce a concise plan for testability.",
    "Summarize main modules, key classes/functions, external boundaries (APIs/DB/fs/network), and seams for unit tests.",
    "List candidate units to test and notable edge cases. Keep it under 400 words as bullets.",
])

GENERATE_PROMPT = "\n".join([
    "Generate ONLY valid Gherkin for this repository, leaning towards unit-testable steps that map well to Jest.",
    "Organize the output into THREE clearly separated Features with tags and optional brief comments (# lines):",
    f"1) Feature: {FEATURE_ORDER[0]} @e2e @summary: 3-6 scenarios that summarize the core user-visible flows.",
    f"2) Feature: {FEATURE_ORDER[1]} @unit @insights: 5-10 scenarios per key module/class/function with fine-grained "
    "Given/When/Then that a Jest test can drive directly (dependencies mocked). Prepend short # Insight comments when helpful.",
    f"3) Feature: {FEATURE_ORDER[2]} @unit @edge @debug: 6-10 scenarios covering invalid inputs, timeouts, retries, "
    "boundaries, and logging/observability hooks.",
    "Strict formatting rules for demo values and parameters:",
    "- Every Scenario MUST be a Scenario Outline with an Examples table (even if there is only one row).",
    "- Place ALL demo/input/expected/config values ONLY in the Examples table as strictly valid, compact JSON (minified, single-line).",
    "- Reference example columns in steps using angle-bracket placeholders like <input>, <config>, <params>, <expected>.",
    "- Choose clear column names: input, params, config, expected, context, etc.",
    '- If a value is scalar, still wrap it as JSON (e.g., "true", "\\"mode\\"", "123").',
    "- Prefer multiple rows when natural; otherwise provide at least one row with JSON values.",
    "Guidelines:",
    "- Use steps like: 'Given module X with dependency Y mocked', 'And input <input>', 'When calling function X.fn with <params>', "
    "'Then it returns <expected>/throws/updates state/calls Y with <params>'.",
    "- Prefer small, verifiable steps over vague prose.",
    "- Do NOT use markdown fences or code blocks; comments with # are allowed inside Gherkin.",
])

REFINE_PROMPT = "\n".join([
    "Reorganize and validate the following Gherkin to strictly follow this order and labeling:",
    f"1) Feature: {FEATURE_ORDER[0]} @e2e @summary",
    f"2) Feature: {FEATURE_ORDER[1]} @unit @insights",
    f"3) Feature: {FEATURE_ORDER[2]} @unit @edge @debug",
    "Enforce these constraints:",
    "- Every Scenario MUST be a Scenario Outline with an Examples table, even for a single example.",
    "- ALL demo/input/expected/config values MUST be strictly valid, compact JSON and live ONLY in the Examples table.",
    "- Steps MUST reference example values via <...> placeholders (e.g., <input>, <config>, <expected>).",
    "- Keep steps concise and unit-testable; # Insight comments allowed sparingly.",
    "Output ONLY Gherkin.",
    "\n\nGherkin to reorganize:",
])


# ---------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------

def extract_response_text(resp: Any) -> Optional[str]:
    """
    Pull the generated text out of a Responses API payload.

    Tries `output_text`, then the `output[*].content[*].text` parts, then a
    chat-completions style `choices[0].message.content`.
    """
    if not isinstance(resp, dict):
        return None
    text = resp.get("output_text")
    if isinstance(text, str) and text.strip():
        return text

    out = resp.get("output")
    if isinstance(out, list):
        parts: List[str] = []
        for item in out:
            content = item.get("content") if isinstance(item, dict) else None
            if not isinstance(content, list):
                continue
            for c in content:
                if isinstance(c, dict) and isinstance(c.get("text"), str):
                    parts.append(c["text"])
        if parts:
            return "\n".join(parts).strip()

    choices = resp.get("choices")
    if isinstance(choices, list) and choices:
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if isinstance(content, str) and content.strip():
            return content
    return None


def _error_text(resp: Dict[str, Any]) -> str:
    error = resp.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str) and error:
        return error
    return "no details"


# ---------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------

class Analyzer:
    """
    Runs the plan -> generate -> refine prompt sequence for one repository.

    Remote calls are blocking (urllib) and run in a worker thread, so the
    event loop stays free while a request or a poll sleep is in flight.
    """

    def __init__(
        self,
        client: Optional[ResponsesClient] = None,
        model: Optional[str] = None,
        poll_interval: float = settings.POLL_INTERVAL_SECONDS,
        poll_timeout: float = settings.POLL_TIMEOUT_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.model = model or settings.OPENAI_API_MODEL
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout
        self.sleep = sleep

    def _client(self) -> ResponsesClient:
        api_key = settings.openai_api_key()
        if not api_key:
            raise AnalysisError("Missing OPENAI_API_SECRET")
        if not settings.openai_web_enabled():
            raise AnalysisError("OPENAI_ALLOW_WEB not enabled")
        if self.client is None:
            self.client = ResponsesClient(settings.OPENAI_API_BASE, api_key)
        return self.client

    async def analyze(self, repo_url: str, on_progress: Optional[ProgressFn] = None) -> str:
        """
        Produce the final Gherkin text for `repo_url`.

        Raises:
            AnalysisError: missing credentials, disabled web access, a failed
                remote call, or an empty generate stage
        """
        report = on_progress or (lambda _m: None)
        client = self._client()
        report(f"Using OpenAI link-based analyzer (model: {self.model})")

        report("::stage::planning")
        plan_text = await self._call(
            client, f"{PLAN_PROMPT}\n\nRepository URL: {repo_url}", report, use_web_tools=True
        )
        if plan_text:
            report(f"Planning completed ({len(plan_text)} chars)")
            report(f"::plan::\n{plan_text}")

        report("::stage::generating")
        context = f"\n\nPlanning context:\n{plan_text}" if plan_text else ""
        initial = await self._call(
            client, f"{GENERATE_PROMPT}{context}\n\nRepository URL: {repo_url}", report, use_web_tools=True
        )
        if not initial:
            raise AnalysisError("OpenAI link-based response was empty")

        report("::stage::refining")
        report("Refining Gherkin organization and structure")
        refined = await self._call(
            client, f"{REFINE_PROMPT}\n{initial}", report, use_web_tools=False
        )

        final = (refined or initial).strip()
        for issue in check_conformance(final):
            report(f"Conformance: {issue}")
        return final

    async def _call(
        self,
        client: ResponsesClient,
        text: str,
        report: ProgressFn,
        use_web_tools: bool = True,
    ) -> Optional[str]:
        body: Dict[str, Any] = {
            "model": self.model,
            "input": [{"role": "user", "content": [{"type": "input_text", "text": text}]}],
            "temperature": 0.2,
        }
        if use_web_tools:
            body["tools"] = [{"type": "web_search"}]
            body["tool_choice"] = "auto"

        try:
            data = await asyncio.to_thread(client.create_response, body)
            status = data.get("status")
            if status and status != "completed" and data.get("id"):
                report(f"OpenAI status: {status}. Polling for completion...")
                data = await self._poll(client, data)
        except APIError as e:
            raise AnalysisError(str(e)) from e

        status = data.get("status")
        if status in TERMINAL_FAILURES:
            raise AnalysisError(f"OpenAI response {status}: {_error_text(data)}")

        text_out = extract_response_text(data)
        return text_out.strip() if text_out else None

    async def _poll(self, client: ResponsesClient, data: Dict[str, Any]) -> Dict[str, Any]:
        """Poll until completed, a terminal failure, or the timeout; returns the last state."""
        deadline = time.monotonic() + self.poll_timeout
        while time.monotonic() < deadline:
            await self.sleep(self.poll_interval)
            latest = await asyncio.to_thread(client.get_response, data["id"])
            for key in ("status", "output", "output_text", "error"):
                if latest.get(key):
                    data[key] = latest[key]
            if data.get("status") == "completed" or data.get("status") in TERMINAL_FAILURES:
                break
        return data


async def analyze(repo_url: str, on_progress: Optional[ProgressFn] = None) -> str:
    """Run the analysis with settings taken from the environment."""
    return await Analyzer().analyze(repo_url, on_progress)
