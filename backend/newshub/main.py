from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import get_settings
from .core.logging import configure_logging
from .api.routes_ingest import router as ingest_router
from .api.routes_sources import router as sources_router

configure_logging()
settings = get_settings()

app = FastAPI(title="NewsHub Ingestion API")

# CORS:
# - In prod, FRONTEND_ORIGIN is required and we never fall back to "*".
# - In non-prod, wide-open CORS unless FRONTEND_ORIGIN narrows it.
if settings.ENV.lower() == "prod":
    if not settings.FRONTEND_ORIGIN:
        raise RuntimeError(
            "FRONTEND_ORIGIN must be set in production; refusing to start with wide-open CORS."
        )
    origins = [o.strip() for o in settings.FRONTEND_ORIGIN.split(",") if o.strip()]
elif settings.FRONTEND_ORIGIN and not settings.CORS_ALLOW_ALL_ORIGINS:
    origins = [o.strip() for o in settings.FRONTEND_ORIGIN.split(",") if o.strip()]
else:
    origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    allow_credentials=False,
)

app.include_router(ingest_router, prefix=settings.API_PREFIX)
app.include_router(sources_router, prefix=settings.API_PREFIX)


@app.get("/health")
def health():
    return {"status": "ok"}
