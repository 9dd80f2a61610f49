from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from helpdesk.api.routes import admin, committee_tags, cron, ping, tickets
from helpdesk.bootstrap import connect, install
from helpdesk.core.config import Settings, get_settings
from helpdesk.core.logging import configure_logging, init_tracer, shutdown_tracer
from helpdesk.middleware import IdentityMiddleware, UnhandledErrorMiddleware
from helpdesk.security.tokens import TokenVerifier


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings: Settings = app.state.settings
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider
    container = None
    try:
        container = await connect(settings)
    except Exception:  # service initialisation is best effort
        logger.exception("Ticket service initialisation failed; ticket routes will answer 503")
    install(app, container)
    try:
        yield
    finally:
        if container is not None:
            await container.aclose()
        shutdown_tracer(tracer_provider)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request", "errors": jsonable_encoder(exc.errors())},
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.token_verifier = TokenVerifier.from_settings(settings)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    # the last middleware added runs first
    app.add_middleware(IdentityMiddleware)
    app.add_middleware(UnhandledErrorMiddleware)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    app.include_router(committee_tags.router)
    app.include_router(admin.router)
    app.include_router(cron.router)
    return app


app = create_app()
