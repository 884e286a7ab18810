from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.api.routes import router

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="GFA Optimizer",
    description=(
        "Maximize gross floor area across land lots that share building types. "
        "Evaluate FAR / density / population compliance, solve the exact LP, "
        "run hybrid optimization and reverse-calculate targets."
    ),
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.get("/")
async def root():
    return {
        "name": "GFA Optimizer",
        "version": "1.0.0",
        "endpoints": {
            "api_docs": "/docs",
            "health": "/health",
            "sample_project": "GET /api/v1/sample-project",
            "evaluate": "POST /api/v1/evaluate",
            "validate": "POST /api/v1/validate",
            "lp_solve": "POST /api/v1/lp/solve",
            "optimize_lp": "POST /api/v1/optimize/lp",
            "optimize": "POST /api/v1/optimize",
            "reverse": "POST /api/v1/reverse",
            "max_feasible": "POST /api/v1/reverse/max-feasible",
        },
    }


@app.get("/health")
async def health():
    return {"status": "healthy", "version": "1.0.0"}
