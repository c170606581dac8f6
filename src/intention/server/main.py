from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from intention.analysis import analyze as default_analyze
from intention.converter import FeatureParseError
from intention.jobs import JobRegistry, ProgressBroadcaster
from intention.orchestrator import AnalyzeFn, JobOrchestrator
from intention.repo import InvalidRepoReference, parse_repo_input
from intention.session import (
    MemorySessionStore,
    RedisSessionStore,
    SessionStore,
    TestSession,
    UnknownFeature,
)
from intention.settings import HEARTBEAT_SECONDS, REDIS_URL
from intention.splice import (
    StepEditOutOfBounds,
    StepNotEditable,
    StepNotFoundAfterEdit,
    UnknownStep,
)

# -------------------- Schemas --------------------

class GenerateResponse(BaseModel):
    jobId: str

class JobResponse(BaseModel):
    id: str
    status: str
    logs: list[str]
    gherkin: str

class PayloadRequest(BaseModel):
    gherkin: str

class FeatureRequest(BaseModel):
    text: str

class EditRequest(BaseModel):
    text: str

class ResultRequest(BaseModel):
    repo: str
    branch: str = "main"
    gherkin: str

# -------------------- App --------------------

def _default_store() -> SessionStore:
    if REDIS_URL:
        return RedisSessionStore(REDIS_URL)
    return MemorySessionStore()


def create_app(
    analyze: Optional[AnalyzeFn] = None,
    store: Optional[SessionStore] = None,
    registry: Optional[JobRegistry] = None,
    heartbeat: float = HEARTBEAT_SECONDS,
) -> FastAPI:
    app = FastAPI(title="Intention BDD")

    registry = registry or JobRegistry()
    broadcaster = ProgressBroadcaster()
    orchestrator = JobOrchestrator(registry, broadcaster, analyze or default_analyze)
    store = store or _default_store()

    app.state.registry = registry
    app.state.broadcaster = broadcaster
    app.state.orchestrator = orchestrator
    app.state.store = store

    # -------------------- Jobs --------------------

    @app.post("/api/generate", response_model=GenerateResponse)
    async def generate(request: Request):
        try:
            body: Any = await request.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}

        repo = body.get("repo")
        branch = body.get("branch")
        if not repo or not isinstance(repo, str):
            return JSONResponse(
                status_code=400,
                content={"error": "Missing repo. Provide owner/repo or GitHub URL."},
            )
        try:
            ref = parse_repo_input(repo)
        except InvalidRepoReference as e:
            return JSONResponse(status_code=400, content={"error": str(e)})
        if isinstance(branch, str):
            ref = ref.with_branch(branch.strip())

        job_id = orchestrator.start_generation(ref)
        return GenerateResponse(jobId=job_id)

    @app.get("/api/progress/{job_id}")
    async def progress(job_id: str):
        job = registry.get(job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")

        async def events():
            # subscribe on first iteration so a dropped request leaves nothing behind
            sub = broadcaster.subscribe(job)
            try:
                async for chunk in sub.stream(heartbeat):
                    yield chunk
            finally:
                # client went away or the job finished
                broadcaster.unsubscribe(job, sub)

        return StreamingResponse(
            events(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    @app.get("/api/jobs/{job_id}", response_model=JobResponse)
    async def get_job(job_id: str):
        """Snapshot of a job: status, log history and result."""
        job = registry.get(job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")
        return JobResponse(**job.to_dict())

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    # -------------------- Sessions --------------------

    def session(session_id: str) -> TestSession:
        return TestSession(store, session_id)

    @app.put("/api/sessions/{session_id}/payload")
    async def load_payload(session_id: str, req: PayloadRequest):
        tests = await session(session_id).load_payload(req.gherkin)
        return {"features": [t.to_dict() for t in tests]}

    @app.get("/api/sessions/{session_id}/tests")
    async def read_tests(session_id: str):
        s = session(session_id)
        tests = await s.read_tests()
        return {
            "gherkin": await s.read_payload(),
            "features": [t.to_dict() for t in tests],
            "aggregated": await s.aggregated_tests(),
        }

    @app.put("/api/sessions/{session_id}/features/{index}")
    async def update_feature(session_id: str, index: int, req: FeatureRequest):
        try:
            entry = await session(session_id).update_feature(index, req.text)
        except UnknownFeature as e:
            raise HTTPException(status_code=404, detail=str(e))
        return entry.to_dict()

    @app.post("/api/sessions/{session_id}/features/{index}/tests")
    async def generate_tests(session_id: str, index: int):
        try:
            entry = await session(session_id).generate_tests(index)
        except UnknownFeature as e:
            raise HTTPException(status_code=404, detail=str(e))
        except FeatureParseError as e:
            raise HTTPException(status_code=400, detail=f"Error generating tests: {e}")
        return entry.to_dict()

    @app.get("/api/sessions/{session_id}/features/{index}/steps")
    async def list_steps(session_id: str, index: int):
        try:
            steps = await session(session_id).steps(index)
        except UnknownFeature as e:
            raise HTTPException(status_code=404, detail=str(e))
        except FeatureParseError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"steps": [s.to_dict() for s in steps]}

    @app.get("/api/sessions/{session_id}/features/{index}/steps/{step_id}")
    async def select_step(session_id: str, index: int, step_id: str):
        try:
            selection = await session(session_id).select(index, step_id)
        except (UnknownFeature, UnknownStep) as e:
            raise HTTPException(status_code=404, detail=str(e))
        except (StepNotEditable, FeatureParseError) as e:
            raise HTTPException(status_code=400, detail=str(e))
        return selection.to_dict()

    @app.post("/api/sessions/{session_id}/features/{index}/steps/{step_id}")
    async def apply_edit(session_id: str, index: int, step_id: str, req: EditRequest):
        try:
            report = await session(session_id).apply_edit(index, step_id, req.text)
        except (UnknownFeature, UnknownStep) as e:
            raise HTTPException(status_code=404, detail=str(e))
        except (StepNotEditable, StepEditOutOfBounds, FeatureParseError) as e:
            raise HTTPException(status_code=400, detail=str(e))
        except StepNotFoundAfterEdit as e:
            raise HTTPException(status_code=409, detail=str(e))
        return report.to_dict()

    @app.put("/api/sessions/{session_id}/result")
    async def write_result(session_id: str, req: ResultRequest):
        await session(session_id).write_result(req.repo, req.branch, req.gherkin)
        return {"ok": True}

    @app.get("/api/sessions/{session_id}/result")
    async def read_result(session_id: str):
        result = await session(session_id).read_result()
        if result is None:
            raise HTTPException(status_code=404, detail="No cached result")
        return result

    @app.delete("/api/sessions/{session_id}")
    async def clear_session(session_id: str):
        await session(session_id).clear()
        return {"ok": True}

    return app


app = create_app()
