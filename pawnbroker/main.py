import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from pawnbroker.api.errors import register_exception_handlers
from pawnbroker.api.v1.router import router as v1_router
from pawnbroker.config import settings
from pawnbroker.gateways.paynow import PaynowGateway
from pawnbroker.services import Services, build_services
from pawnbroker.services.notifications import CeleryNotifier

logger = logging.getLogger("pawnbroker.api")


def default_services() -> Services:
    return build_services(gateway=PaynowGateway.from_settings(settings), notifier=CeleryNotifier())


def create_app(services: Services | None = None) -> FastAPI:
    app = FastAPI(title="Pawnbroker Core API")
    app.state.services = services or default_services()

    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["X-Request-ID"],
        )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Attach a request id to every response and log a compact access line.

        A caller-supplied X-Request-ID is reused; otherwise a UUID4 is minted.
        """

        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id

        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000

        response.headers["X-Request-ID"] = request_id
        logger.info(
            "access request_id=%s method=%s path=%s status=%s duration_ms=%.2f",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )
        return response

    register_exception_handlers(app)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.include_router(v1_router, prefix="/api/v1")
    return app


app = create_app()
