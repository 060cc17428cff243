from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from constants import AUTO_SUBMIT_ENABLED
from database import cosmos_metrics
from logging_config import configure_logging
from routers import admin, attempts, coding, faculty
from scheduler import AsyncioScheduler
from services import Services, build_services_from_env
from sweeper import AutoSubmitSweeper

configure_logging()
logger = logging.getLogger(__name__)


def create_app(services: Optional[Services] = None, enable_sweeper: bool = AUTO_SUBMIT_ENABLED) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        if getattr(app.state, "services", None) is None:
            app.state.services = await build_services_from_env()
        current = app.state.services
        logger.info(f"Services ready ({current.mode} mode)")

        scheduler = AsyncioScheduler(current.sessions.clock)
        app.state.scheduler = scheduler
        if enable_sweeper:
            AutoSubmitSweeper(current.finalizer, current.drafts, scheduler).start()

        yield

        # Shutdown
        await scheduler.shutdown()
        logger.info("Scheduled tasks cancelled")

    app = FastAPI(
        title="LMS Assessment API",
        description="Timed assessments, coding lab and analytics backend",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests for debugging"""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} in {process_time:.4f}s")
        return response

    @app.get("/")
    async def root():
        return {"message": "LMS Assessment API", "version": "1.0.0"}

    @app.get("/health")
    async def health_check(request: Request):
        current = getattr(request.app.state, "services", None)
        return {
            "status": "healthy" if current else "starting",
            "database": "cosmos" if current and current.mode == "cosmos" else "in-memory",
        }

    @app.get("/metrics")
    async def get_metrics():
        """Cosmos DB request charge and latency"""
        return cosmos_metrics.snapshot()

    # Include routers
    app.include_router(attempts.router, prefix="/api/tests", tags=["tests"])
    app.include_router(coding.router, prefix="/api/coding", tags=["coding"])
    app.include_router(faculty.router, prefix="/api/faculty", tags=["faculty"])
    app.include_router(admin.router, prefix="/api/admin", tags=["admin"])

    return app


app = create_app()


def main():
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
