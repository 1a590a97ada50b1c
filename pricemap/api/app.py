"""HTTP/JSON read API consumed by the map UI."""
from __future__ import annotations

import argparse
import logging
from typing import Any

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from pricemap.core.config import Settings
from pricemap.core.models import BoundingBox, ListingFilters
from pricemap.core.read_api import ReadService
from pricemap.core.supabase_repo import SupabaseRepo
from pricemap.core.timezone_guard import local_today
from pricemap.core.trend import TrendEngine


LOGGER = logging.getLogger(__name__)


def build_service(settings: Settings) -> ReadService:
    repo = SupabaseRepo.from_settings(settings)
    return ReadService(
        repo,
        trend_engine=TrendEngine(repo, lookback_days=settings.trend_lookback_days, tz_name=settings.timezone),
        today=lambda: local_today(settings.timezone),
        max_listings_limit=settings.listings_max_limit,
    )


def create_app(service: ReadService | None = None) -> FastAPI:
    app = FastAPI(title="District Price Map API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.state.service = service

    def get_service() -> ReadService:
        if app.state.service is None:
            app.state.service = build_service(Settings.from_env())
        return app.state.service

    @app.exception_handler(ValueError)
    async def _bad_request(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(Exception)
    async def _internal_error(request: Request, exc: Exception) -> JSONResponse:
        LOGGER.exception("Unhandled error path=%s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.get("/health", response_class=PlainTextResponse)
    def health() -> str:
        return "ok"

    @app.get("/api/cities")
    def cities() -> list[dict[str, Any]]:
        return get_service().list_cities()

    @app.get("/api/cities/{city}/stats")
    def city_stats(city: str, offer_type: str = Query("sale", alias="offerType")) -> Any:
        summary = get_service().get_city_summary(city, offer_type)
        if summary is None:
            return JSONResponse(status_code=404, content={"error": "City not found"})
        return summary

    @app.get("/api/cities/{city}/districts")
    def district_stats(city: str, offer_type: str = Query("sale", alias="offerType")) -> dict[str, Any]:
        return get_service().get_district_stats(city, offer_type)

    @app.get("/api/cities/{city}/districts/{district}/history")
    def district_history(
        city: str,
        district: str,
        offer_type: str = Query("sale", alias="offerType"),
        months: int = Query(12),
    ) -> dict[str, Any]:
        return get_service().get_district_history(city, district, offer_type, months_back=months)

    @app.get("/api/listings")
    def listings(
        city: str | None = None,
        district: str | None = None,
        offer_type: str | None = Query(None, alias="offerType"),
        min_price: float | None = Query(None, alias="minPrice"),
        max_price: float | None = Query(None, alias="maxPrice"),
        min_size: float | None = Query(None, alias="minSize"),
        max_size: float | None = Query(None, alias="maxSize"),
        rooms: str | None = None,
        limit: int = Query(50),
    ) -> dict[str, Any]:
        if not city:
            raise ValueError("City is required")
        filters = ListingFilters(
            city=city,
            district=district,
            offer_type=offer_type,
            price_min=min_price,
            price_max=max_price,
            size_min=min_size,
            size_max=max_size,
            rooms=parse_rooms_param(rooms),
            limit=limit,
        )
        return get_service().get_listings(filters)

    @app.get("/api/districts/geo")
    def districts_geo(bbox: str | None = None, offer_type: str = Query("sale", alias="offerType")) -> dict[str, Any]:
        if not bbox:
            raise ValueError("Missing bbox parameter")
        return get_service().get_districts_in_viewport(BoundingBox.parse(bbox), offer_type)

    return app


def parse_rooms_param(raw: str | None) -> list[int] | None:
    """'1,2,4' -> [1, 2, 4]; 4 stands for four rooms or more."""
    if not raw:
        return None
    try:
        rooms = [int(part.strip()) for part in raw.split(",") if part.strip()]
    except ValueError as exc:
        raise ValueError("rooms must be a comma-separated list of integers") from exc
    if any(room < 1 for room in rooms):
        raise ValueError("rooms must be positive")
    return rooms or None


def main() -> None:
    import uvicorn

    parser = argparse.ArgumentParser(description="Serve the district price map read API.")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    uvicorn.run(create_app(build_service(Settings.from_env())), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
