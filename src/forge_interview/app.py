"""FastAPI surface for planning, text turns and voice sessions."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from contextlib import contextmanager, suppress
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterator, List, Optional, Sequence

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from starlette.responses import StreamingResponse

from .config import AppSettings, InterviewDepth
from .engine import InterviewEngine
from .llm_client import BackendIntegrationError, TextBackend
from .models import ExtractionType, Forge, MessageRole
from .observability import initialize_tracing
from .planner import PlanObserver
from .progress import AdvanceKind, NoActiveQuestionError
from .store import InterviewStore, RecordNotFoundError, StoreUnavailableError
from .voice import GatewayFactory, VoiceNotConfiguredError

SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


class CreateForgeRequest(BaseModel):
    expertName: str = Field(..., min_length=1)
    domain: str = Field(..., min_length=1)
    expertBio: str = ""
    targetAudience: Optional[str] = None
    depth: Optional[str] = None


class FollowUpRequest(BaseModel):
    topic: str = Field(..., min_length=1)


class MessageRequest(BaseModel):
    content: str = Field(..., min_length=1)


class ExtractionPatch(BaseModel):
    content: Optional[str] = None
    type: Optional[str] = None
    tags: Optional[List[str]] = None
    confidence: Optional[float] = None


class VoiceMessageRequest(BaseModel):
    role: str
    content: str = Field(..., min_length=1)


class VoiceExtractRequest(BaseModel):
    content: str = Field(..., min_length=1)


class VoiceDisconnectRequest(BaseModel):
    turns: Optional[int] = None
    userInitiated: bool = False


@contextmanager
def _http_errors() -> Iterator[None]:
    """Translate engine exceptions into HTTP responses."""

    try:
        yield
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except NoActiveQuestionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StoreUnavailableError as exc:
        logging.error("Store unavailable: %s", exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except VoiceNotConfiguredError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


def _interview_state(engine: InterviewEngine, forge_id: str) -> Dict[str, Any]:
    store = engine.store
    forge = store.get_forge(forge_id)
    questions = store.list_questions(forge_id)
    messages = store.list_messages(forge_id)
    sections = []
    for section in store.list_sections(forge_id):
        section_questions = sorted(
            (q for q in questions if q.section_id == section.id),
            key=lambda item: item.order_index,
        )
        sections.append(
            {
                **section.to_dict(),
                "questions": [
                    {
                        **question.to_dict(),
                        "messages": [
                            message.to_dict()
                            for message in messages
                            if message.question_id == question.id
                        ],
                    }
                    for question in section_questions
                ],
            }
        )
    return {
        "forge": forge.to_dict(),
        "sections": sections,
        "extractions": [item.to_dict() for item in store.list_extractions(forge_id)],
        "currentRound": store.current_round(forge_id),
    }


def _stream_plan(
    run: Callable[[PlanObserver], Awaitable[Forge]],
    *,
    label: str,
) -> StreamingResponse:
    queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue()
    done_token = object()

    async def observer(kind: str, data: Dict[str, Any]) -> None:
        await queue.put({"type": kind, **data})

    async def producer() -> None:
        try:
            await run(observer)
        except Exception as exc:
            logging.exception("%s failed", label)
            await queue.put({"type": "error", "message": str(exc)})
        finally:
            await queue.put({"type": done_token})

    task = asyncio.create_task(producer())

    async def event_stream() -> AsyncIterator[bytes]:
        try:
            while True:
                event = await queue.get()
                if event.get("type") is done_token:
                    break
                payload = json.dumps(event, ensure_ascii=False)
                yield f"data: {payload}\n\n".encode("utf-8")
        finally:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    return StreamingResponse(
        event_stream(), media_type="text/event-stream", headers=SSE_HEADERS
    )


def create_app(
    settings: AppSettings,
    *,
    store: Optional[InterviewStore] = None,
    backend: Optional[TextBackend] = None,
    voice_gateway_factory: Optional[GatewayFactory] = None,
    allow_origins: Sequence[str] | None = None,
) -> FastAPI:
    """Create the FastAPI app serving the interview engine."""

    engine = InterviewEngine.create(
        settings,
        store=store,
        backend=backend,
        voice_gateway_factory=voice_gateway_factory,
    )
    app = FastAPI(title="Forge Interview Engine")
    app.state.engine = engine

    origins = list(allow_origins) if allow_origins else ["*"]
    allow_credentials = origins != ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/forges", status_code=201)
    async def create_forge(payload: CreateForgeRequest) -> Dict[str, Any]:
        try:
            depth = InterviewDepth.from_string(
                payload.depth, default=settings.default_depth
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        with _http_errors():
            forge = engine.store.create_forge(
                Forge(
                    expert_name=payload.expertName,
                    domain=payload.domain,
                    expert_bio=payload.expertBio,
                    target_audience=payload.targetAudience,
                    depth=depth,
                )
            )
        return forge.to_dict()

    @app.get("/forges/{forge_id}")
    async def get_forge(forge_id: str) -> Dict[str, Any]:
        with _http_errors():
            return engine.store.get_forge(forge_id).to_dict()

    @app.post("/forges/{forge_id}/plan-interview")
    async def plan_interview(forge_id: str) -> Dict[str, Any]:
        with _http_errors():
            forge = await engine.planner.plan_interview(forge_id)
        return forge.to_dict()

    @app.post("/forges/{forge_id}/plan-interview-stream")
    async def plan_interview_stream(forge_id: str) -> StreamingResponse:
        with _http_errors():
            engine.store.get_forge(forge_id)
        return _stream_plan(
            lambda observer: engine.planner.plan_interview(
                forge_id, observer=observer
            ),
            label="Interview planning",
        )

    @app.post("/forges/{forge_id}/follow-up")
    async def follow_up(forge_id: str, payload: FollowUpRequest) -> StreamingResponse:
        with _http_errors():
            engine.store.get_forge(forge_id)
        return _stream_plan(
            lambda observer: engine.planner.plan_follow_up(
                forge_id, payload.topic, observer=observer
            ),
            label="Follow-up planning",
        )

    @app.get("/forges/{forge_id}/interview")
    async def interview_state(forge_id: str) -> Dict[str, Any]:
        with _http_errors():
            return _interview_state(engine, forge_id)

    @app.post("/forges/{forge_id}/interview/opening")
    async def interview_opening(forge_id: str) -> Dict[str, Any]:
        with _http_errors():
            message = await engine.turns.opening(forge_id)
        return {"message": message.to_dict(), "opening": message.content}

    @app.post("/forges/{forge_id}/interview/message")
    async def interview_message(
        forge_id: str,
        payload: MessageRequest,
    ) -> StreamingResponse:
        with _http_errors():
            turn = engine.turns.prepare_text_turn(forge_id, payload.content)
        handle = engine.turns.start(turn)
        return StreamingResponse(
            handle.encoded(),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @app.post("/forges/{forge_id}/interview/next")
    async def interview_next(forge_id: str) -> Dict[str, Any]:
        with _http_errors():
            decision = engine.turns.next_question(forge_id)
        if decision.kind == AdvanceKind.ROUND_COMPLETE:
            return {"complete": True}
        return {"sectionId": decision.section_id, "questionId": decision.question_id}

    @app.post("/forges/{forge_id}/interview/complete")
    async def interview_complete(forge_id: str) -> Dict[str, Any]:
        with _http_errors():
            forge = engine.turns.end_early(forge_id)
        return forge.to_dict()

    @app.get("/forges/{forge_id}/extractions")
    async def list_extractions(forge_id: str) -> List[Dict[str, Any]]:
        with _http_errors():
            items = engine.store.list_extractions(forge_id)
        return [item.to_dict() for item in items]

    @app.patch("/forges/{forge_id}/extractions/{extraction_id}")
    async def update_extraction(
        forge_id: str,
        extraction_id: str,
        payload: ExtractionPatch,
    ) -> Dict[str, Any]:
        kind = None
        if payload.type is not None:
            kind = ExtractionType.parse(payload.type)
            if kind is None:
                raise HTTPException(status_code=400, detail="Invalid extraction type")
        if payload.model_dump(exclude_none=True) == {}:
            raise HTTPException(status_code=400, detail="Nothing to update")
        with _http_errors():
            extraction = engine.store.get_extraction(forge_id, extraction_id)
            if payload.content is not None:
                extraction.content = payload.content
            if kind is not None:
                extraction.type = kind
            if payload.tags is not None:
                extraction.tags = list(payload.tags)
            if payload.confidence is not None:
                extraction.confidence = max(0.0, min(1.0, payload.confidence))
            updated = engine.store.update_extraction(extraction)
        return updated.to_dict()

    @app.delete("/forges/{forge_id}/extractions/{extraction_id}")
    async def delete_extraction(forge_id: str, extraction_id: str) -> Dict[str, bool]:
        with _http_errors():
            deleted = engine.store.delete_extraction(forge_id, extraction_id)
        if not deleted:
            raise HTTPException(status_code=404, detail="Extraction not found")
        return {"deleted": True}

    @app.post("/forges/{forge_id}/voice-session")
    async def voice_session(forge_id: str) -> Dict[str, Any]:
        with _http_errors():
            return engine.voice.session(forge_id).to_dict()

    @app.get("/forges/{forge_id}/voice-agent/progress")
    async def voice_progress(forge_id: str) -> Dict[str, str]:
        with _http_errors():
            engine.store.get_forge(forge_id)
            return {"progress": engine.voice.progress_text(forge_id)}

    @app.post("/forges/{forge_id}/voice-message")
    async def voice_message(
        forge_id: str,
        payload: VoiceMessageRequest,
    ) -> Dict[str, Any]:
        try:
            role = MessageRole(payload.role)
        except ValueError as exc:
            raise HTTPException(
                status_code=400, detail="role must be 'user' or 'assistant'"
            ) from exc
        with _http_errors():
            outcome = engine.voice.record_message(forge_id, role, payload.content)
        return outcome.to_dict()

    @app.post("/forges/{forge_id}/voice-extract")
    async def voice_extract(
        forge_id: str,
        payload: VoiceExtractRequest,
    ) -> Dict[str, Any]:
        with _http_errors():
            outcome = await engine.voice.handle_utterance(forge_id, payload.content)
        response: Dict[str, Any] = {
            "extractions": [item.to_event_item() for item in outcome.extractions]
        }
        if outcome.decision is not None and outcome.decision.moved:
            response["advance"] = {
                "kind": outcome.decision.kind.value,
                "sectionId": outcome.decision.section_id,
                "questionId": outcome.decision.question_id,
            }
        return response

    @app.post("/forges/{forge_id}/voice-disconnect")
    async def voice_disconnect(
        forge_id: str,
        payload: VoiceDisconnectRequest,
    ) -> Dict[str, Any]:
        with _http_errors():
            outcome = engine.voice.handle_disconnect(
                forge_id,
                turns=payload.turns,
                user_initiated=payload.userInitiated,
            )
        return outcome.to_dict()

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


def run_server(
    settings: AppSettings,
    *,
    host: str = "127.0.0.1",
    port: int = 8081,
    allow_origins: Sequence[str] | None = None,
    log_level: str = "info",
    tracing: bool = False,
) -> None:
    """Start the interview API server."""

    if tracing:
        initialize_tracing()
    app = create_app(settings=settings, allow_origins=allow_origins)
    uvicorn.run(app, host=host, port=port, log_level=log_level)


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m forge_interview.app",
        description="Serve the Forge interview engine over HTTP.",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host interface for the API server (default: 127.0.0.1).",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8081,
        help="Port for the API server (default: 8081).",
    )
    parser.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origin",
        help="Optional CORS origin(s) to allow. Defaults to '*' if not provided.",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        help="Logging level for uvicorn (default: info).",
    )
    parser.add_argument(
        "--tracing",
        action="store_true",
        help="Export OpenTelemetry traces to FORGE_OTLP_ENDPOINT.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO)
    args = _parse_args(argv)
    try:
        settings = AppSettings.load()
    except RuntimeError as exc:
        logging.error("Failed to load AppSettings: %s", exc)
        raise SystemExit(1) from exc

    try:
        run_server(
            settings=settings,
            host=args.host,
            port=args.port,
            allow_origins=args.allow_origin,
            log_level=args.log_level,
            tracing=args.tracing,
        )
    except BackendIntegrationError as exc:
        logging.error("%s", exc)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
