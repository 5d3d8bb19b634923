"""FastAPI application entry point for the Mental Buddy API."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse

from mental_buddy import __version__
from mental_buddy.api.routes.chat import router as chat_router
from mental_buddy.api.routes.upload import router as upload_router
from mental_buddy.config import settings
from mental_buddy.core.deps import init_firebase
from mental_buddy.database import init_db, make_engine
from mental_buddy.services.relay import MessageRelay
from mental_buddy.services.session_store import SessionStore

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s:%(lineno)d - %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the process-wide clients once, in dependency order."""
    configure_logging()

    engine = make_engine()
    init_db(engine)
    app.state.store = SessionStore(engine)
    app.state.relay = MessageRelay()
    logger.info("Database initialized")

    if app.state.relay.client is None:
        logger.warning("GEMINI_API_KEY is not set; /api/chat will answer 500")

    try:
        init_firebase()
    except (ValueError, OSError) as e:
        logger.warning(f"Firebase init skipped, authenticated routes will reject requests: {e}")

    yield

    engine.dispose()


app = FastAPI(
    title="Mental Buddy API",
    description="Chat sessions with a compassionate AI companion",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", response_class=HTMLResponse)
def root():
    return """
    <html>
        <head>
            <title>Mental Buddy</title>
        </head>
        <body>
            <h1>Mental Buddy API is running</h1>
            <a href="/docs">Open API Docs</a>
        </body>
    </html>
    """


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


app.include_router(chat_router)
app.include_router(upload_router)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Hide internal error details from clients."""
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )
