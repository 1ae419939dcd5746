"""Configuration management."""

from typing import Optional, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings pulled from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TERRAIN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Lattice
    chunk_size: float = Field(default=500.0, gt=0, description="World size of one chunk side")
    chunk_resolution: int = Field(default=129, ge=2, description="Vertices per chunk side")
    lattice_radius: int = Field(
        default=1, ge=0, description="Chunks created from -radius..radius on both axes"
    )

    # Always-on noise source band (weight ~1 everywhere)
    always_on_inner_radius: float = Field(default=100000.0, description="Inner radius of the noise band")
    always_on_outer_radius: float = Field(default=100001.0, description="Outer radius of the noise band")

    # Heightmap patch
    heightmap_path: Optional[str] = Field(default=None, description="Heightmap image loaded at startup")
    heightmap_inner_radius: float = Field(default=250.0, description="Radius of full heightmap influence")
    heightmap_outer_radius: float = Field(default=300.0, description="Radius where heightmap influence ends")
    heightmap_footprint_offset: Tuple[float, float] = Field(
        default=(-250.0, -250.0), description="World position of the heightmap's lower corner"
    )
    heightmap_footprint_size: Tuple[float, float] = Field(
        default=(500.0, 500.0), description="World extent covered by the heightmap"
    )
    heightmap_flip_horizontal: bool = Field(
        default=True, description="Mirror the heightmap along the horizontal axis"
    )

    # Cosmetic tint of the origin chunk
    demo_tint: bool = Field(default=True, description="Tint the origin chunk by heightmap height")
    tint_max_height: float = Field(default=16.0, gt=0, description="Height mapped to full tint")

    # Performance
    rebuild_workers: int = Field(default=1, ge=1, description="Threads used to rebuild chunks")

    # API
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Logging format (console or json)")


settings = Settings()
