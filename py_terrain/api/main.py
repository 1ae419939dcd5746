"""FastAPI main application."""

import logging
from typing import Any, Dict, List, Optional, Tuple

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from PIL import UnidentifiedImageError
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from .. import __version__
from ..config import Settings, settings
from ..core.chunk_manager import HeightmapLoad, TerrainChunkManager
from ..core.errors import ConfigurationError, DuplicateHeightmapError
from ..core.heightmap_image import load_raster_from_image


def configure_logging(app_settings: Settings) -> None:
    """Configure structlog on top of the standard library logger."""
    logging.basicConfig(format="%(message)s", level=app_settings.log_level.upper())
    renderer = (
        structlog.dev.ConsoleRenderer()
        if app_settings.log_format == "console"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(settings)
logger = structlog.get_logger()

app = FastAPI(
    title="Procedural Terrain API",
    description="Chunked terrain height fields from noise and heightmaps",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_manager: Optional[TerrainChunkManager] = None
_heightmap_load: Optional[HeightmapLoad] = None


def get_manager() -> TerrainChunkManager:
    """Process-wide chunk manager, created on first use."""
    global _manager, _heightmap_load
    if _manager is None:
        _manager = TerrainChunkManager(settings)
        _heightmap_load = HeightmapLoad(_manager)
    return _manager


def set_manager(manager: TerrainChunkManager) -> None:
    """Replace the process-wide chunk manager."""
    global _manager, _heightmap_load
    _manager = manager
    _heightmap_load = HeightmapLoad(manager)


def get_heightmap_load() -> HeightmapLoad:
    get_manager()
    return _heightmap_load


# Request/Response models
class ChunkSummary(BaseModel):
    """Position and adjacency of one chunk."""

    key: Tuple[int, int]
    world_offset: Tuple[float, float]
    resolution: int
    edges: List[Tuple[int, int]]


class ChunkData(BaseModel):
    """Dense height buffer of one chunk."""

    key: Tuple[int, int]
    world_offset: Tuple[float, float]
    resolution: int
    world_size: float
    heights: List[List[float]] = Field(description="heights[row][column]")
    tint: List[List[float]] = Field(description="Cosmetic tint intensity per vertex")


class ConfigResponse(BaseModel):
    """Current live-tunable parameters."""

    noise: Dict[str, Any]
    heightmap: Dict[str, Any]
    heightmap_band: Optional[Dict[str, Any]] = None


def _config_response(manager: TerrainChunkManager) -> ConfigResponse:
    band = manager.heightmap_source.band.model_dump() if manager.heightmap_source else None
    return ConfigResponse(
        noise=manager.noise_params.model_dump(mode="json"),
        heightmap=manager.heightmap_params.model_dump(mode="json"),
        heightmap_band=band,
    )


# Event handlers
@app.on_event("startup")
async def startup_event():
    """Build the lattice and load the configured heightmap."""
    logger.info("Starting terrain API")
    manager = get_manager()
    if settings.heightmap_path:
        pixels = await run_in_threadpool(load_raster_from_image, settings.heightmap_path)
        await run_in_threadpool(get_heightmap_load().complete, pixels)
    logger.info("API startup complete", chunks=len(manager))


# API endpoints
@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Procedural Terrain API",
        "version": __version__,
        "status": "running",
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    manager = get_manager()
    return {
        "status": "healthy",
        "chunks": len(manager),
        "heightmap": manager.heightmap_source is not None,
    }


@app.get("/chunks", response_model=List[ChunkSummary])
def list_chunks():
    """List every chunk in the lattice."""
    manager = get_manager()
    return [
        ChunkSummary(
            key=chunk.key,
            world_offset=chunk.world_offset,
            resolution=chunk.resolution,
            edges=manager.get_edges(*chunk.key),
        )
        for chunk in manager
    ]


@app.get("/chunks/{x}/{z}", response_model=ChunkData)
def get_chunk(x: int, z: int):
    """Height buffer of one chunk."""
    try:
        chunk = get_manager().get_chunk(x, z)
    except KeyError:
        raise HTTPException(status_code=404, detail="Chunk not found")
    return ChunkData(**chunk.export())


@app.get("/config", response_model=ConfigResponse)
def get_config():
    """Current noise and heightmap parameters."""
    return _config_response(get_manager())


def _apply_change(section: str, changes: Dict[str, Any]) -> ConfigResponse:
    manager = get_manager()
    try:
        manager.apply_configuration_change(section, changes)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail={"message": str(e), "fields": list(e.fields)})
    return _config_response(manager)


@app.patch("/config/noise", response_model=ConfigResponse)
def update_noise(changes: Dict[str, Any]):
    """Change noise parameters and rebuild every chunk."""
    logger.info("Noise change requested", changes=changes)
    return _apply_change("noise", changes)


@app.patch("/config/heightmap", response_model=ConfigResponse)
def update_heightmap(changes: Dict[str, Any]):
    """Change heightmap parameters and rebuild every chunk."""
    logger.info("Heightmap change requested", changes=changes)
    return _apply_change("heightmap", changes)


@app.patch("/config/heightmap_band", response_model=ConfigResponse)
def update_heightmap_band(changes: Dict[str, Any]):
    """Move or resize the heightmap's influence band."""
    logger.info("Heightmap band change requested", changes=changes)
    return _apply_change("heightmap_band", changes)


@app.post("/heightmap")
async def upload_heightmap(request: Request):
    """
    Insert a heightmap image sent as the raw request body.

    Only the first heightmap is accepted.
    """
    data = await request.body()
    if not data:
        raise HTTPException(status_code=400, detail="Empty image body")

    try:
        pixels = await run_in_threadpool(load_raster_from_image, data)
    except UnidentifiedImageError:
        logger.error("Heightmap upload could not be decoded", size=len(data))
        raise HTTPException(status_code=400, detail="Could not decode image")

    try:
        inserted = await run_in_threadpool(get_heightmap_load().complete, pixels)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except DuplicateHeightmapError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not inserted:
        raise HTTPException(status_code=409, detail="A heightmap has already been loaded")

    height, width = pixels.shape
    return {"status": "inserted", "width": width, "height": height}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
