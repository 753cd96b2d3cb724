# incidentwatch/geocode.py
"""
Coordinate backfill for incidents with lat IS NULL.

Providers implement geocode(query) -> {"lat", "lng"} | None and declare min_interval,
the minimum seconds between calls their rate limit allows. The enricher blocks for that
interval between calls; it is not a cross-process limiter, so run one enrichment job
at a time.
"""
from __future__ import annotations

import argparse
import logging
import time
from typing import Callable, Dict, List, Optional, Protocol

import duckdb
import requests

import config
from incidentwatch import db
from incidentwatch.errors import ConfigError, PersistenceError, ProviderError
from incidentwatch.geo_lookup import GeoIndexGeocoder
from incidentwatch.ingest import require_role
from incidentwatch.schema import EnrichSummary

logger = logging.getLogger("geocoding")

OPENCAGE_URL = "https://api.opencagedata.com/geocode/v1/json"


class Geocoder(Protocol):
    min_interval: float

    def geocode(self, query: str) -> Optional[Dict[str, float]]: ...


class OpenCageGeocoder:
    min_interval = config.GEOCODE_MIN_INTERVAL_SEC

    def __init__(
        self,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = config.HTTP_TIMEOUT_SEC,
        url: str = OPENCAGE_URL,
    ):
        self.api_key = api_key if api_key is not None else config.OPENCAGE_API_KEY
        if not self.api_key:
            raise ConfigError("OpenCage API key not configured")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.url = url

    def geocode(self, query: str) -> Optional[Dict[str, float]]:
        params = {"q": query, "key": self.api_key, "limit": 1, "no_annotations": 1}
        try:
            resp = self.session.get(self.url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise ProviderError(f"request failed: {e}", source="opencage") from e

        if not resp.ok:
            logger.warning("[geocoding] OpenCage error for %r: %s", query, resp.status_code)
            return None

        try:
            data = resp.json()
        except ValueError:
            logger.warning("[geocoding] OpenCage returned non-JSON for %r", query)
            return None
        if not isinstance(data, dict):
            logger.warning("[geocoding] unexpected OpenCage response for %r", query)
            return None

        results = data.get("results") or []
        geometry = results[0].get("geometry") if results and isinstance(results[0], dict) else None
        if not isinstance(geometry, dict) or geometry.get("lat") is None or geometry.get("lng") is None:
            return None
        return {"lat": float(geometry["lat"]), "lng": float(geometry["lng"])}


def clamp_limit(limit) -> int:
    try:
        n = int(limit)
    except (TypeError, ValueError):
        return config.GEOCODE_DEFAULT_LIMIT
    if n <= 0:
        return config.GEOCODE_DEFAULT_LIMIT
    return min(n, config.GEOCODE_MAX_LIMIT)


def build_query(location: Optional[str], subdivision: Optional[str], country: Optional[str]) -> str:
    parts = [str(p).strip() for p in (location, subdivision, country) if p is not None]
    return ", ".join(p for p in parts if p)


def enrich_missing_coordinates(
    con: duckdb.DuckDBPyConnection,
    geocoder: Geocoder,
    limit=config.GEOCODE_DEFAULT_LIMIT,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> EnrichSummary:
    """
    One resumable batch: already-enriched incidents drop out of the lat IS NULL filter,
    so a partial run is safe to repeat.
    """
    batch = db.records(db.incidents_missing_coords(con, clamp_limit(limit)))
    summary = EnrichSummary(processed=len(batch))
    if not batch:
        logger.info("[geocoding] all incidents already have coordinates")
        return summary

    logger.info("[geocoding] geocoding %d incidents missing coordinates", len(batch))
    interval = float(getattr(geocoder, "min_interval", 0.0) or 0.0)
    last_call: Optional[float] = None

    for inc in batch:
        query = build_query(inc.get("location"), inc.get("subdivision"), inc.get("country"))
        if not query:
            summary.failed += 1
            continue

        if last_call is not None and interval > 0:
            wait = interval - (clock() - last_call)
            if wait > 0:
                sleep(wait)

        try:
            hit = geocoder.geocode(query)
        except ProviderError as e:
            logger.error("[geocoding] error for %r: %s", query, e)
            hit = None
        finally:
            last_call = clock()

        if not hit:
            summary.failed += 1
            continue

        try:
            db.set_incident_coords(con, inc["id"], hit["lat"], hit["lng"])
        except PersistenceError as e:
            logger.error("[geocoding] update error for %s: %s", inc["id"], e)
            summary.failed += 1
            continue
        summary.geocoded += 1

    logger.info("[geocoding] complete: %d enriched, %d failed", summary.geocoded, summary.failed)
    return summary


def run_geocoding(
    con: duckdb.DuckDBPyConnection,
    geocoder: Geocoder,
    limit=config.GEOCODE_DEFAULT_LIMIT,
    role: Optional[str] = "service",
) -> EnrichSummary:
    require_role(role)
    return enrich_missing_coordinates(con, geocoder, limit)


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Backfill coordinates for incidents missing lat/lng.")
    parser.add_argument("--db", default=None, help="DuckDB path (default: INCIDENTWATCH_DB)")
    parser.add_argument("--limit", type=int, default=config.GEOCODE_DEFAULT_LIMIT)
    parser.add_argument("--offline", action="store_true", help="use the local GeoNames index instead of OpenCage")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s] [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    geocoder = GeoIndexGeocoder() if args.offline else OpenCageGeocoder()
    con = db.connect(args.db)
    try:
        summary = run_geocoding(con, geocoder, args.limit)
    finally:
        con.close()
    print(summary.model_dump_json(indent=2))


if __name__ == "__main__":
    main()
