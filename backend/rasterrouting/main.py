from fastapi import FastAPI, HTTPException, status, BackgroundTasks
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
import uuid
from datetime import datetime, timezone
from typing import Dict, Optional
import logging

from rasterrouting.models.route import (
    RouteRequest, RouteResponse, RouteStatus,
    RouteStatusResponse, RouteResult, RouteOptions
)
from rasterrouting.services.gpx_generator import GPXGenerator
from rasterrouting.services.route_finder import RouteFinderService
from rasterrouting.services.routing_config import DEFAULT_CONCURRENCY, RoutingConfig, get_corridor, get_preset
from rasterrouting.services.rgb_dem import get_calibration
from rasterrouting.services.tile_source import make_http_fetch

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Raster Router API",
    description="Least-cost routing over tiled elevation and hazard rasters",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# In-memory storage of route jobs
routes_storage: Dict[str, dict] = {}

# Shared transport; tile atlases are created per request. DEM and hazard
# sources each run up to DEFAULT_CONCURRENCY requests on it at once.
SHARED_POOL_SIZE = 2 * DEFAULT_CONCURRENCY
shared_fetch = make_http_fetch(pool_size=SHARED_POOL_SIZE)


def get_config_for_options(options: Optional[RouteOptions]) -> RoutingConfig:
    """Build a routing configuration from the preset and per-request overrides"""
    if options is None:
        return get_preset("default")

    config = get_preset(options.preset)

    if options.useHazard is not None:
        config.use_hazard = options.useHazard
        if not options.useHazard:
            config.hazard_url = None
        elif config.hazard_url is None:
            config.hazard_url = RoutingConfig().hazard_url
    if options.costModel is not None:
        config.cost_model = options.costModel
    if options.corridor is not None:
        config.corridor = get_corridor(options.corridor)
    if options.rgbCalibration is not None:
        config.rgb_calibration = get_calibration(options.rgbCalibration)
    if options.simplifyEpsilon is not None:
        config.simplify_epsilon = options.simplifyEpsilon
    if options.smoothPasses is not None:
        config.smooth_passes = options.smoothPasses

    return config


def build_route_finder(options: Optional[RouteOptions]) -> RouteFinderService:
    return RouteFinderService(config=get_config_for_options(options), fetch=shared_fetch)


@app.get("/api/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "raster-router-api"}


async def process_route(route_id: str, request: RouteRequest):
    """Background task to process route calculation"""
    try:
        routes_storage[route_id]["progress"] = 10

        try:
            route_finder = build_route_finder(request.options)
        except ValueError as e:
            routes_storage[route_id]["status"] = RouteStatus.FAILED
            routes_storage[route_id]["message"] = f"Invalid configuration: {e}"
            return

        if not route_finder.validate_route_request(request.start, request.end):
            routes_storage[route_id]["status"] = RouteStatus.FAILED
            routes_storage[route_id]["message"] = "Invalid route request"
            return

        routes_storage[route_id]["progress"] = 30

        path, stats = await route_finder.find_route(request.start, request.end)

        routes_storage[route_id]["progress"] = 90
        routes_storage[route_id]["loaded_tiles"] = stats.pop("loaded_tiles", None)

        if not path:
            routes_storage[route_id]["status"] = RouteStatus.FAILED
            routes_storage[route_id]["message"] = stats.get("error", "No route found")
            routes_storage[route_id]["stats"] = stats
        else:
            routes_storage[route_id]["status"] = RouteStatus.COMPLETED
            routes_storage[route_id]["path"] = path
            routes_storage[route_id]["stats"] = stats
            routes_storage[route_id]["progress"] = 100

    except Exception as e:
        logger.error(f"Error processing route {route_id}: {str(e)}")
        routes_storage[route_id]["status"] = RouteStatus.FAILED
        routes_storage[route_id]["message"] = f"Processing error: {str(e)}"


@app.post("/api/routes/calculate", response_model=RouteResponse, status_code=status.HTTP_202_ACCEPTED)
async def calculate_route(request: RouteRequest, background_tasks: BackgroundTasks):
    """Start route calculation"""
    route_id = str(uuid.uuid4())

    routes_storage[route_id] = {
        "id": route_id,
        "status": RouteStatus.PROCESSING,
        "progress": 0,
        "request": request.model_dump(),
        "created_at": datetime.now(timezone.utc).isoformat()
    }

    background_tasks.add_task(process_route, route_id, request)

    return RouteResponse(routeId=route_id, status=RouteStatus.PROCESSING)


@app.post("/api/routes/find", response_model=RouteResult)
async def find_route_now(request: RouteRequest):
    """Calculate a route and return it in the same response"""
    try:
        route_finder = build_route_finder(request.options)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid configuration: {e}")

    if not route_finder.validate_route_request(request.start, request.end):
        raise HTTPException(status_code=400, detail="Invalid route request")

    path, stats = await route_finder.find_route(request.start, request.end)
    if not path:
        raise HTTPException(status_code=404, detail=stats.get("error", "No route found"))

    loaded_tiles = stats.pop("loaded_tiles", None)
    return RouteResult(
        routeId=str(uuid.uuid4()),
        status=RouteStatus.COMPLETED,
        path=path,
        stats=stats,
        loadedTiles=loaded_tiles,
        createdAt=datetime.now(timezone.utc).isoformat()
    )


@app.get("/api/routes/{route_id}/status", response_model=RouteStatusResponse)
async def get_route_status(route_id: str):
    """Get route calculation status"""
    if route_id not in routes_storage:
        raise HTTPException(status_code=404, detail="Route not found")

    route = routes_storage[route_id]
    return RouteStatusResponse(
        status=route["status"],
        progress=route["progress"],
        message=route.get("message")
    )


@app.get("/api/routes/{route_id}", response_model=RouteResult)
async def get_route(route_id: str):
    """Get calculated route"""
    if route_id not in routes_storage:
        raise HTTPException(status_code=404, detail="Route not found")

    route = routes_storage[route_id]

    if route["status"] != RouteStatus.COMPLETED:
        raise HTTPException(
            status_code=400,
            detail=f"Route is not ready. Status: {route['status']}"
        )

    return RouteResult(
        routeId=route_id,
        status=route["status"],
        path=route.get("path", []),
        stats=route.get("stats", {}),
        loadedTiles=route.get("loaded_tiles"),
        createdAt=route["created_at"]
    )


@app.get("/api/routes/{route_id}/gpx")
async def download_gpx(route_id: str):
    """Download route as GPX file"""
    if route_id not in routes_storage:
        raise HTTPException(status_code=404, detail="Route not found")

    route = routes_storage[route_id]

    if route["status"] != RouteStatus.COMPLETED:
        raise HTTPException(
            status_code=400,
            detail=f"Route is not ready. Status: {route['status']}"
        )

    path = route.get("path", [])
    stats = route.get("stats", {})

    start_coord, end_coord = path[0], path[-1]
    route_name = f"Route {start_coord.lat:.4f},{start_coord.lon:.4f} to {end_coord.lat:.4f},{end_coord.lon:.4f}"

    if 'path_with_elevation' in stats:
        gpx_content = GPXGenerator.create_gpx(stats['path_with_elevation'], route_name=route_name, stats=stats)
    else:
        simple_path = [(coord.lon, coord.lat) for coord in path]
        gpx_content = GPXGenerator.create_simple_gpx(simple_path, route_name)

    filename = f"route_{route_id[:8]}.gpx"
    return Response(
        content=gpx_content,
        media_type="application/gpx+xml",
        headers={
            "Content-Disposition": f"attachment; filename={filename}"
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
