"""
FastAPI application for the Commute Traffic Tracker API

Serves travel-time statistics, reliability analytics and prediction accuracy for the
dashboard. Every measurement endpoint accepts the same query-string filters.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from sqlalchemy.orm import Session

from api.aggregations import (
    build_analytics_response,
    build_csv_export,
    build_data_response,
    build_intervals_response,
    export_filename,
    format_current_estimate,
    sanitize,
)
from src.analytics import (
    DEFAULT_CONFIDENCE_LEVELS,
    get_hourly_variance,
    get_reliability_metrics,
    get_statistical_summary,
    get_traffic_patterns,
)
from src.config import ConfigError, Route, get_api_key, get_origin, get_route_by_id, load_routes
from src.database import get_db
from src.local_time import utcnow
from src.maps_client import MapsApiError, MapsClient
from src.models import TRAFFIC_MODELS
from src.predictions import get_prediction_accuracy, get_prediction_heatmap, reconcile
from src.queries import FilterSpec, InvalidFilterError, get_health_status

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Commute Traffic API",
    description="REST API for commute travel-time analytics",
    version="1.0.0",
)

# Enable CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify your frontend domain
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_filters(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    direction: Optional[str] = None,
    route_id: Optional[str] = None,
    exclude_holidays: bool = False,
    weekdays_only: bool = False,
) -> FilterSpec:
    """Parse and validate the shared query-string filters (400 on invalid input)"""
    try:
        return FilterSpec(
            start_date=start_date,
            end_date=end_date,
            direction=direction,
            route_id=route_id,
            exclude_holidays=exclude_holidays,
            weekdays_only=weekdays_only,
        ).validate()
    except InvalidFilterError as e:
        raise HTTPException(status_code=400, detail=str(e))


def get_routes_config() -> list[Route]:
    try:
        return load_routes()
    except ConfigError as e:
        logger.error("Route configuration error: %s", e)
        raise HTTPException(status_code=500, detail=str(e))


def get_maps_client() -> MapsClient:
    try:
        return MapsClient(get_api_key())
    except ConfigError as e:
        raise HTTPException(status_code=503, detail=str(e))


def require_route(route_id: str, routes: list[Route]) -> Route:
    route = get_route_by_id(routes, route_id)
    if route is None:
        raise HTTPException(status_code=404, detail=f"Route {route_id} not found")
    return route


def validate_traffic_model(traffic_model: str) -> str:
    if traffic_model not in TRAFFIC_MODELS:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid traffic_model. Must be one of: {', '.join(TRAFFIC_MODELS)}",
        )
    return traffic_model


@app.get("/")
async def root():
    """API root - health check"""
    return {"status": "ok", "name": "Commute Traffic API", "version": "1.0.0", "docs": "/docs"}


@app.get("/api/routes")
def list_routes(routes: list[Route] = Depends(get_routes_config)):
    """
    Get configured routes

    Returns:
        List of routes with id, label, destination label and active flag
    """
    return [
        {
            "id": route.id,
            "label": route.label,
            "destination_label": route.destination_label,
            "active": route.active,
        }
        for route in routes
    ]


@app.get("/api/data")
def get_data(filters: FilterSpec = Depends(get_filters), db: Session = Depends(get_db)):
    """
    Main dashboard data

    Returns meta (filters, sample count, date range) plus hourly averages, the
    weekday x hour heatmap, averages by road route, recent trips and the best /
    worst time slots, all over the same filtered measurements.
    """
    return build_data_response(db, filters)


@app.get("/api/intervals")
def get_intervals(filters: FilterSpec = Depends(get_filters), db: Session = Depends(get_db)):
    """15-minute and weekday / 30-minute breakdowns"""
    return build_intervals_response(db, filters)


@app.get("/api/export")
def export_csv(filters: FilterSpec = Depends(get_filters), db: Session = Depends(get_db)):
    """Download filtered measurements as CSV"""
    return Response(
        content=build_csv_export(db, filters),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


@app.get("/api/health")
def health(db: Session = Depends(get_db)):
    """Collector health (unhealthy when the last successful run is over 2 hours old)"""
    return get_health_status(db)


@app.get("/api/analytics")
def get_analytics(filters: FilterSpec = Depends(get_filters), db: Session = Depends(get_db)):
    """Summary, hourly variance, traffic patterns and reliability in one payload"""
    return build_analytics_response(db, filters)


@app.get("/api/analytics/summary")
def analytics_summary(filters: FilterSpec = Depends(get_filters), db: Session = Depends(get_db)):
    """
    Percentile summary per direction

    Returns:
        List of summaries (mean, median, p75/p90/p95, std dev, min/max, CV)
    """
    return sanitize(get_statistical_summary(db, filters))


@app.get("/api/analytics/variance")
def analytics_variance(filters: FilterSpec = Depends(get_filters), db: Session = Depends(get_db)):
    """Hours ranked by coefficient of variation, most unpredictable first"""
    return sanitize(get_hourly_variance(db, filters))


@app.get("/api/analytics/patterns")
def analytics_patterns(filters: FilterSpec = Depends(get_filters), db: Session = Depends(get_db)):
    """Share of trips in each of the five traffic patterns"""
    return sanitize(get_traffic_patterns(db, filters))


@app.get("/api/analytics/reliability")
def analytics_reliability(
    levels: Optional[list[int]] = Query(None),
    filters: FilterSpec = Depends(get_filters),
    db: Session = Depends(get_db),
):
    """
    Reliability curve: "N% of trips finish within T minutes"

    Args:
        levels: Confidence levels (repeat the parameter), default 50, 75, 80, 90, 95
    """
    if levels is not None and any(level < 0 or level > 100 for level in levels):
        raise HTTPException(status_code=400, detail="Confidence levels must be between 0 and 100")
    return sanitize(get_reliability_metrics(db, filters, levels or list(DEFAULT_CONFIDENCE_LEVELS)))


@app.get("/api/predictions/{route_id}/accuracy")
def prediction_accuracy(
    route_id: str,
    traffic_model: str = "best_guess",
    routes: list[Route] = Depends(get_routes_config),
    db: Session = Depends(get_db),
):
    """
    Prediction accuracy per weekday / hour / direction

    Returns:
        Rows with prediction count, average predicted and actual minutes, mean
        absolute error, bias (positive = over-prediction) and RMSE
    """
    require_route(route_id, routes)
    validate_traffic_model(traffic_model)
    return sanitize(get_prediction_accuracy(db, route_id, traffic_model))


@app.get("/api/predictions/{route_id}/heatmap")
def prediction_heatmap(
    route_id: str,
    traffic_model: str = "best_guess",
    routes: list[Route] = Depends(get_routes_config),
    db: Session = Depends(get_db),
):
    """Average predicted minutes per weekday / hour / direction"""
    require_route(route_id, routes)
    validate_traffic_model(traffic_model)
    return sanitize(get_prediction_heatmap(db, route_id, traffic_model))


@app.post("/api/predictions/{route_id}/reconcile")
def reconcile_predictions(
    route_id: str,
    routes: list[Route] = Depends(get_routes_config),
    db: Session = Depends(get_db),
):
    """Link past predictions to their actual measurements"""
    require_route(route_id, routes)
    return {"linked": reconcile(db, route_id)}


@app.get("/api/current")
def current_estimate(
    route_id: Optional[str] = None,
    routes: list[Route] = Depends(get_routes_config),
    client: MapsClient = Depends(get_maps_client),
):
    """
    Live travel-time estimate for both directions of a route

    Args:
        route_id: Route to query (default: first configured route)
    """
    if route_id is None:
        route = routes[0]
    else:
        route = require_route(route_id, routes)

    try:
        origin = get_origin()
    except ConfigError as e:
        raise HTTPException(status_code=503, detail=str(e))

    try:
        outbound = client.fetch_directions(origin, route.destination)
        inbound = client.fetch_directions(route.destination, origin)
    except MapsApiError as e:
        logger.error("Failed to fetch current estimates for %s: %s", route.id, e)
        raise HTTPException(
            status_code=502, detail=f"Failed to fetch current estimates: {e}"
        )

    return {
        "timestamp": utcnow().isoformat() + "Z",
        "route_id": route.id,
        "outbound": format_current_estimate(outbound),
        "inbound": format_current_estimate(inbound),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
