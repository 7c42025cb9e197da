import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from revshare.core.config import settings
from revshare.core.errors import LedgerError
import revshare.models  # noqa: F401  # force model registration

from revshare.api.v1.agreements import router as agreements_router
from revshare.api.v1.earnings import router as earnings_router
from revshare.api.v1.payments import router as payments_router
from revshare.api.v1.payouts import router as payouts_router

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Unhandled ledger error %s: %s", exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


def create_application() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Revshare Ledger API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            # Local development (Vite frontend)
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LedgerError, ledger_error_handler)

    @app.get("/")
    def root():
        return {"status": "ok", "service": "revshare"}

    # Routers
    app.include_router(payments_router, prefix="/api/v1")
    app.include_router(earnings_router, prefix="/api/v1")
    app.include_router(payouts_router, prefix="/api/v1")
    app.include_router(agreements_router, prefix="/api/v1")

    return app


app = create_application()
