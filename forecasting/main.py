import os
import time

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from forecasting.db import Base, engine
from forecasting.errors import register_exception_handlers
from forecasting.logging_config import configure_logging
from forecasting.routers import admin, auth, forecasts, periods, projects, reports, users

configure_logging()
logger = structlog.get_logger()

app = FastAPI(title="Sales Forecasting API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[os.getenv("FRONTEND_URL", "http://localhost:3000")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# create tables if missing
Base.metadata.create_all(bind=engine)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "request",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        duration_ms=round((time.perf_counter() - start) * 1000, 1),
    )
    return response


app.include_router(auth.router)
app.include_router(users.router)
app.include_router(periods.router)
app.include_router(forecasts.router)
app.include_router(projects.router)
app.include_router(reports.router)
app.include_router(admin.router)


@app.get("/api/health")
def health():
    return {"status": "ok", "environment": os.getenv("APP_ENV", "development")}
