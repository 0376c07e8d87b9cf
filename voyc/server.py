"""Local control server for Voyc: drive dictation over HTTP."""

from __future__ import annotations

import argparse
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from voyc import __version__
from voyc.state import TransitionReason
from voyc.types import HealthCheck, StateResponse

if TYPE_CHECKING:
    from voyc.orchestrator import DictationOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765

_orchestrator: DictationOrchestrator | None = None


def _not_ready() -> JSONResponse:
    return JSONResponse({"error": "Not initialized"}, status_code=503)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    global _orchestrator

    from dotenv import load_dotenv

    from voyc.capture import SoundDeviceCapture
    from voyc.config import Config
    from voyc.delivery import create_delivery
    from voyc.orchestrator import DictationOrchestrator

    load_dotenv()
    config = Config.from_env()
    for problem in config.validate():
        logger.warning("Configuration problem: %s", problem)

    _orchestrator = DictationOrchestrator(
        config,
        capture=SoundDeviceCapture(config.audio),
        delivery=create_delivery(config.delivery),
    )
    logger.info("Control server ready (provider %s)", config.provider.provider.value)

    yield

    logger.info("Shutting down control server")
    await _orchestrator.dispose()
    _orchestrator = None


def _command_response(orchestrator: "DictationOrchestrator", accepted: bool) -> JSONResponse:
    return JSONResponse({
        "accepted": accepted,
        "state": orchestrator.state.value,
        "session_id": orchestrator.session_id,
    })


def create_app() -> FastAPI:
    app = FastAPI(
        title="Voyc Control API",
        description="Start, stop and inspect dictation on this machine",
        version=__version__,
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health_check():
        if _orchestrator is None:
            body: HealthCheck = {"status": "unhealthy", "provider": "", "provider_configured": False}
            return JSONResponse(body)

        factory = _orchestrator.factory
        body = {
            "status": "healthy",
            "provider": factory.current_type.value,
            "provider_configured": factory.is_configured(),
        }
        return JSONResponse(body)

    @app.get("/config")
    async def get_config():
        if _orchestrator is None:
            return _not_ready()

        config = _orchestrator.config
        factory = _orchestrator.factory
        return JSONResponse({
            "provider": config.provider.provider.value,
            "language": config.provider.language,
            "available_providers": [p.value for p in factory.available_providers()],
            "capabilities": factory.capabilities(),
            "refinement_enabled": config.refinement.enabled,
            "refiner": config.refinement.refiner.value,
            "silence_timeout_s": config.endpoint.silence_timeout_s,
            "delivery_mode": config.delivery.mode.value,
            "latency_thresholds": {
                "baseten_post_process_ms": config.latency.thresholds.baseten_post_process_ms,
                "total_latency_ms": config.latency.thresholds.total_latency_ms,
                "stt_latency_ms": config.latency.thresholds.stt_latency_ms,
            },
            "sample_rate": config.audio.sample_rate,
        })

    @app.get("/state")
    async def get_state():
        if _orchestrator is None:
            return _not_ready()

        machine = _orchestrator.state_machine
        body: StateResponse = {
            "state": machine.state.value,
            "time_in_state_s": round(machine.time_in_state(), 3),
            "error": machine.last_error,
            "active": _orchestrator.is_active,
        }
        return JSONResponse(body)

    @app.get("/history")
    async def get_history():
        if _orchestrator is None:
            return _not_ready()

        return JSONResponse([
            {
                "from": t.from_state.value,
                "to": t.to_state.value,
                "reason": t.reason.value,
                "timestamp": t.timestamp,
                "error": t.error,
            }
            for t in _orchestrator.state_machine.history
        ])

    @app.get("/metrics")
    async def get_metrics():
        if _orchestrator is None:
            return _not_ready()

        metrics = _orchestrator.metrics
        last = metrics.last_record
        return JSONResponse({
            "summary": metrics.summary(),
            "last": last.to_dict() if last else None,
            "alerts_enabled": metrics.alerts_enabled,
        })

    @app.post("/dictation/start")
    async def start_dictation(terminal: bool = False):
        if _orchestrator is None:
            return _not_ready()
        return _command_response(_orchestrator, await _orchestrator.start(terminal=terminal))

    @app.post("/dictation/stop")
    async def stop_dictation():
        if _orchestrator is None:
            return _not_ready()
        return _command_response(_orchestrator, _orchestrator.stop(TransitionReason.USER_TOGGLE))

    @app.post("/dictation/toggle")
    async def toggle_dictation(terminal: bool = False):
        if _orchestrator is None:
            return _not_ready()
        accepted = await _orchestrator.toggle(terminal=terminal, reason=TransitionReason.USER_TOGGLE)
        return _command_response(_orchestrator, accepted)

    @app.post("/dictation/abort")
    async def abort_dictation():
        if _orchestrator is None:
            return _not_ready()
        await _orchestrator.abort()
        return _command_response(_orchestrator, True)

    return app


def build_parser(parser: argparse.ArgumentParser | None = None) -> argparse.ArgumentParser:
    parser = parser or argparse.ArgumentParser(description="Voyc Control Server")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--reload", action="store_true")
    return parser


def serve(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT, reload: bool = False) -> None:
    import uvicorn

    print(f"\n🚀 Starting Voyc control server at http://{host}:{port}")
    print("   Press Ctrl+C to stop\n")

    uvicorn.run(
        "voyc.server:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


def main() -> None:
    args = build_parser().parse_args()
    serve(args.host, args.port, args.reload)


if __name__ == "__main__":
    main()
