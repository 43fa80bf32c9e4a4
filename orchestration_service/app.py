from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .admin import bind_orchestrator, router as admin_router


def create_app(orchestrator=None):
    app = FastAPI(title="Orchestration Service Admin")
    app.include_router(admin_router, prefix="/admin")

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    if orchestrator is not None:
        bind_orchestrator(orchestrator)

        @app.on_event("shutdown")
        async def _close_orchestrator():
            await orchestrator.close()

    return app


# convenience for running locally
if __name__ == '__main__':
    import uvicorn

    from .logging_setup import setup_logging
    from .metrics import start_metrics_server_if_enabled
    from .orchestrator import build_orchestrator

    setup_logging()
    start_metrics_server_if_enabled()
    app = create_app(build_orchestrator())
    uvicorn.run(app, host='0.0.0.0', port=8001)
