"""
SENTIMENT-VAULT — API Entry Point.

Encrypted sentiment ledger: each analysis is committed as an encrypted
emotion category plus public metadata, and can be disclosed exactly once
through a proof-checked decryption attested on the ledger.

Routes are mounted under settings.API_V1_STR; /health sits at the root.
"""

import logging
import time
from datetime import datetime, timezone

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sentiment_vault import __version__
from sentiment_vault.api.routes import router
from sentiment_vault.core.config import settings
from sentiment_vault.services.facade import SentimentVaultService, get_service

logger = logging.getLogger(__name__)

# --- Application boot timestamp for uptime tracking ---
_BOOT_TIME: float = time.time()


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.PROJECT_NAME,
        description="Encrypted sentiment ledger with one-time verified disclosure",
        version=__version__,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
    )

    # --- CORS Configuration ---
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router, prefix=settings.API_V1_STR)

    @application.get("/health", tags=["System"])
    async def health_check(
        service: SentimentVaultService = Depends(get_service),
    ) -> dict:
        """
        Health check for orchestration and the dashboard status badge.

        Reports ledger reachability and the local journal's integrity
        without touching the decryption oracle.
        """
        ledger_available = await service.is_available()
        integrity = service.verify_integrity()
        return {
            "status": "operational" if ledger_available and integrity.is_valid else "degraded",
            "version": __version__,
            "uptime_seconds": round(time.time() - _BOOT_TIME, 2),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "contract": service.ledger.address,
            "ledger_available": ledger_available,
            "records": len(service.list_all()),
            "journal_valid": integrity.is_valid,
        }

    logger.info(f"[API] {settings.PROJECT_NAME} v{__version__} routes mounted at {settings.API_V1_STR}")
    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=settings.LOG_LEVEL)
    uvicorn.run("sentiment_vault.main:app", host="0.0.0.0", port=settings.PORT, reload=True)
