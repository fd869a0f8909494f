from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from enum import Enum


class Coordinate(BaseModel):
    lat: float = Field(..., ge=-85.0511, le=85.0511, description="Latitude (Web-Mercator range)")
    lon: float = Field(..., ge=-180, le=180, description="Longitude")

    def to_lonlat(self):
        return (self.lon, self.lat)


class RouteOptions(BaseModel):
    preset: str = Field("default", description="Routing preset: default, elevation_only, wide_corridor")
    costModel: Optional[str] = Field(None, description="Override cost model: tobler or elevation")
    corridor: Optional[str] = Field(None, description="Override corridor filter: tight or wide")
    rgbCalibration: Optional[str] = Field(
        None, description="Override RGB elevation calibration: terrain_rgb or fixed_point_meters"
    )
    useHazard: Optional[bool] = Field(None, description="Include the hazard layer in routing")
    simplifyEpsilon: Optional[float] = Field(None, ge=0, description="Simplification tolerance in pixels")
    smoothPasses: Optional[int] = Field(None, ge=0, le=6, description="Corner-cutting passes")

    @field_validator('preset')
    @classmethod
    def validate_preset(cls, v):
        if v not in ("default", "elevation_only", "wide_corridor"):
            raise ValueError("preset must be 'default', 'elevation_only' or 'wide_corridor'")
        return v

    @field_validator('costModel')
    @classmethod
    def validate_cost_model(cls, v):
        if v is not None and v not in ("tobler", "elevation"):
            raise ValueError("costModel must be 'tobler' or 'elevation'")
        return v

    @field_validator('corridor')
    @classmethod
    def validate_corridor(cls, v):
        if v is not None and v not in ("tight", "wide"):
            raise ValueError("corridor must be 'tight' or 'wide'")
        return v


class RouteRequest(BaseModel):
    start: Coordinate
    end: Coordinate
    options: Optional[RouteOptions] = RouteOptions()


class RouteStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RouteResponse(BaseModel):
    routeId: str
    status: RouteStatus


class RouteStatusResponse(BaseModel):
    status: RouteStatus
    progress: int = Field(..., ge=0, le=100)
    message: Optional[str] = None


class RouteResult(BaseModel):
    routeId: str
    status: RouteStatus
    path: List[Coordinate]
    stats: dict
    loadedTiles: Optional[Dict[str, Any]] = None
    createdAt: str
