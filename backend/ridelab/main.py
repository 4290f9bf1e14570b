"""
RideLab downhill telemetry API.

Serves processed runs from a folder of capture CSVs and compares runs
recorded on the same track.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ridelab.api.runs import compare_router, folder_router, router as runs_router
from ridelab.config import data_folder_from_env
from ridelab.services.repository import get_repository, init_repository


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    if get_repository().data_folder is None:
        folder = data_folder_from_env()
        if folder.exists():
            init_repository(folder)
        else:
            logger.warning(f"No capture folder at {folder}; waiting for POST /folder")
    logger.info(f"RideLab API {API_VERSION} ready")
    yield


app = FastAPI(
    title="RideLab Downhill Telemetry",
    description="Impact, harshness and stability analysis of downhill runs, with multi-run comparison.",
    version=API_VERSION,
    lifespan=lifespan,
)

# Local dashboards call from arbitrary origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(runs_router)
app.include_router(compare_router)
app.include_router(folder_router)


@app.get("/")
async def root():
    return {"name": "RideLab Downhill Telemetry", "version": API_VERSION, "status": "running"}


@app.get("/health")
def health_check():
    repo = get_repository()
    return {
        "status": "healthy",
        "data_folder": str(repo.data_folder) if repo.data_folder else None,
        "run_count": repo.run_count,
    }
