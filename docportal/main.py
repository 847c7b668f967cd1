from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from docportal.api import accounts, auth, distributors, invitations, password_reset
from docportal.bootstrap.first_admin import run_first_admin_bootstrap
from docportal.core.config import get_settings
from docportal.core.database import engine, ping_database
from docportal.core.errors import PortalError
from docportal.core.logging import configure_logging
from docportal.models import Base
from docportal.services.notification_service import build_notification_sender

configure_logging()

settings = get_settings()

Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.notifier = build_notification_sender(settings)
    run_first_admin_bootstrap(settings)
    yield


app = FastAPI(title="docportal API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "kind": exc.kind},
    )


app.include_router(auth.router)
app.include_router(accounts.router)
app.include_router(invitations.router)
app.include_router(distributors.router)
app.include_router(password_reset.router)


@app.get("/health", tags=["health"])
def health_check():
    """Report service status and confirm database connectivity."""
    database_status = "ok" if ping_database() else "error"
    return {
        "status": "ok",
        "database": database_status,
    }
