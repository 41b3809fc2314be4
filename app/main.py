from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import aggregation_jobs
from app.config import settings
from app.services import logger as log_service
from app.services.database import PostgresAggregationStore
from app.services.store import get_store


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    store = get_store() if settings.persistence_backend.lower().strip() == "postgres" else None
    if isinstance(store, PostgresAggregationStore):
        await store.ensure_schema()
    log_service.log_event("startup", "Aggregation API started", backend=settings.persistence_backend)
    yield
    # Shutdown
    if isinstance(store, PostgresAggregationStore):
        await store.close()


app = FastAPI(
    title="Country Metric Aggregator",
    description="Batch enrichment of country metrics via AI-backed web research",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(aggregation_jobs.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "metric-aggregator"}
