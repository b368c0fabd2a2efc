"""FastAPI application: event ingestion and analytics endpoints."""
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from skill_tracker.api.schemas import (
    RecentErrorsResponse,
    RetentionResponse,
    SummaryResponse,
    ToolStatsResponse,
    TrackAccepted,
    TrackRejected,
)
from skill_tracker.config.loader import TrackerConfig, default_config
from skill_tracker.core import analytics
from skill_tracker.core.hashing import extract_user_identifier
from skill_tracker.core.ingest import InvalidEventError, ingest_event
from skill_tracker.storage.repository import initialize_schema

logger = logging.getLogger(__name__)


def _rejected(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


def create_app(config: Optional[TrackerConfig] = None) -> FastAPI:
    """Build the tracking API around one configuration."""
    config = config or default_config()
    db_path = config.database.path
    windows = config.analytics

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        initialize_schema(db_path, default_category=config.tracking.default_category)
        logger.info(f"Usage event store ready at {db_path}")
        yield

    app = FastAPI(title="Skill Usage Tracker", lifespan=lifespan)
    app.state.config = config

    # The dashboard is served from another origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.get("/")
    def read_root():
        return {"status": "skill tracker is running"}

    @app.post(
        "/api/track",
        response_model=TrackAccepted,
        responses={400: {"model": TrackRejected}, 500: {"model": TrackRejected}},
    )
    async def track_event(request: Request):
        """Record one usage event; the caller is identified by request headers."""
        try:
            raw = await request.json()
        except ValueError:
            return _rejected(400, "Request body must be valid JSON")

        identifier = extract_user_identifier(
            request.headers,
            request.client.host if request.client else None,
        )
        try:
            await run_in_threadpool(
                ingest_event,
                raw,
                identifier,
                db_path=db_path,
                default_category=config.tracking.default_category,
            )
        except InvalidEventError as e:
            return _rejected(400, str(e))
        except Exception as e:
            return _rejected(500, str(e) or type(e).__name__)

        return {"success": True, "message": "Event tracked"}

    @app.get("/analytics/summary", response_model=SummaryResponse)
    def summary(days: Optional[int] = Query(None, ge=1)):
        return analytics.get_summary(days or windows.summary_days, db_path=db_path)

    @app.get("/analytics/tools", response_model=List[ToolStatsResponse])
    def tools(days: Optional[int] = Query(None, ge=1)):
        return analytics.get_tool_stats(days or windows.tools_days, db_path=db_path)

    @app.get("/analytics/retention", response_model=RetentionResponse)
    def retention(days: Optional[int] = Query(None, ge=1)):
        return analytics.get_retention_stats(days or windows.retention_days, db_path=db_path)

    @app.get("/analytics/errors", response_model=RecentErrorsResponse)
    def errors(
        days: Optional[int] = Query(None, ge=1),
        limit: Optional[int] = Query(None, ge=1, le=1000),
    ):
        return analytics.get_recent_errors(
            days or windows.errors_days,
            limit or windows.errors_limit,
            db_path=db_path,
        )

    return app
