"""Wires the interview components around one store and one backend."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .conductor import Conductor
from .config import AppSettings, EngineSettings
from .extractor import Extractor
from .llm_client import MAFChatClient, TextBackend
from .planner import InterviewPlanner
from .progress import Advancer, ProgressTracker
from .store import InterviewStore, create_store
from .turns import InterviewTurnRunner
from .validator import Validator
from .voice import GatewayFactory, VoiceSessionService


@dataclass(slots=True)
class InterviewEngine:
    store: InterviewStore
    tracker: ProgressTracker
    conductor: Conductor
    planner: InterviewPlanner
    turns: InterviewTurnRunner
    voice: VoiceSessionService

    @classmethod
    def create(
        cls,
        settings: AppSettings,
        *,
        store: Optional[InterviewStore] = None,
        backend: Optional[TextBackend] = None,
        voice_gateway_factory: Optional[GatewayFactory] = None,
    ) -> "InterviewEngine":
        engine: EngineSettings = settings.engine
        if store is None:
            store = create_store(settings.redis_url)
        if backend is None:
            backend = MAFChatClient(
                settings.model,
                repair_truncated_json=engine.repair_truncated_json,
            )
        model = settings.model.model
        fast_model = settings.model.fast_model or model

        tracker = ProgressTracker(store, Advancer(engine.confidence_threshold))
        conductor = Conductor(
            backend,
            history_limit=engine.conductor_history_limit,
            model=model,
            fast_model=fast_model,
        )
        validator = Validator(backend, model=fast_model)
        extractor = Extractor(backend, model=fast_model)
        return cls(
            store=store,
            tracker=tracker,
            conductor=conductor,
            planner=InterviewPlanner(
                backend,
                store,
                conductor=conductor,
                model=model,
                fast_model=fast_model,
            ),
            turns=InterviewTurnRunner(
                store,
                conductor=conductor,
                validator=validator,
                extractor=extractor,
                tracker=tracker,
                queue_size=engine.sse_queue_size,
            ),
            voice=VoiceSessionService(
                store,
                validator=validator,
                extractor=extractor,
                tracker=tracker,
                engine=engine,
                agent_id=settings.voice_agent_id,
                gateway_factory=voice_gateway_factory,
            ),
        )
