"""GHIN Handicap MCP Server - handicap, golfer, course and tee lookups over the GHIN API."""

from __future__ import annotations

import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import httpx
from dotenv import load_dotenv
from mcp.server import FastMCP
from pydantic import ValidationError

from errors import HandicapError, UnknownSourceError
from ghin import DEFAULT_BASE_URL, PROVIDERS, GhinMobileProvider, HandicapProvider
from models import (
    CourseQuery,
    CourseSearchQuery,
    Pagination,
    ProductAccessRequest,
    SearchQuery,
    TeeQuery,
)

# ---------------------------------------------------------------------------
# Configuration & Logging
# ---------------------------------------------------------------------------

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("ghin-handicap-mcp")

GHIN_BASE_URL = os.getenv("GHIN_BASE_URL", DEFAULT_BASE_URL)
GHIN_USERNAME = os.getenv("GHIN_USERNAME")
GHIN_PASSWORD = os.getenv("GHIN_PASSWORD")
GHIN_ATTESTATION_URL = os.getenv("GHIN_ATTESTATION_URL")
GHIN_ATTESTATION_API_KEY = os.getenv("GHIN_ATTESTATION_API_KEY")
GHIN_ATTESTATION_AUTH = os.getenv("GHIN_ATTESTATION_AUTH")
VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Providers
#
# One provider (and therefore one shared token) per handicap source, created
# on first use and kept for the lifetime of the process.
# ---------------------------------------------------------------------------

_providers: Dict[str, HandicapProvider] = {}


def _get_provider(source: str) -> HandicapProvider:
    """Return the provider for ``source``, creating it if needed."""
    provider = _providers.get(source)
    if provider is not None:
        return provider

    provider_cls = PROVIDERS.get(source)
    if provider_cls is None:
        raise UnknownSourceError(source)

    if provider_cls is GhinMobileProvider:
        provider = GhinMobileProvider(
            GHIN_BASE_URL,
            GHIN_USERNAME,
            GHIN_PASSWORD,
            attestation_url=GHIN_ATTESTATION_URL,
            attestation_api_key=GHIN_ATTESTATION_API_KEY,
            attestation_auth=GHIN_ATTESTATION_AUTH,
        )
    else:
        provider = provider_cls(GHIN_BASE_URL, GHIN_USERNAME, GHIN_PASSWORD)
    _providers[source] = provider
    return provider


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Close provider connection pools on shutdown."""
    try:
        yield
    finally:
        for provider in list(_providers.values()):
            await provider.aclose()
        _providers.clear()


mcp = FastMCP("GHIN Handicap Server", lifespan=lifespan)


# ---------------------------------------------------------------------------
# Helper: error mapping
# ---------------------------------------------------------------------------

def _error(exc: Exception) -> Dict[str, Any]:
    """Every failure crosses the RPC boundary as an UNKNOWN status with a message."""
    if isinstance(exc, ValidationError):
        message = f"Validation error: {exc}"
    elif isinstance(exc, httpx.TimeoutException):
        message = "Request timed out. Please try again."
    elif isinstance(exc, httpx.ConnectError):
        message = "Unable to connect to the GHIN API. Check your network connection."
    elif isinstance(exc, httpx.HTTPError):
        message = f"Request failed: {exc}"
    else:
        message = str(exc)
    return {"error": message, "status": "unknown"}


# ---------------------------------------------------------------------------
# Tools - Health Check
# ---------------------------------------------------------------------------

@mcp.tool()
async def health_check(source: str = "ghin") -> Dict[str, Any]:
    """Check GHIN connectivity by logging in with the configured account.

    Args:
        source: Handicap source to check ('ghin' or 'ghin_mobile')
    """
    logger.info("Running health check for %s", source)
    try:
        await _get_provider(source).login()
    except (HandicapError, httpx.HTTPError) as e:
        return {"status": "error", "message": _error(e)["error"], "version": VERSION}
    return {
        "status": "ok",
        "message": "Connected and authenticated successfully.",
        "version": VERSION,
        "server": "GHIN Handicap MCP Server",
    }


# ---------------------------------------------------------------------------
# Tools - Handicaps & Players
# ---------------------------------------------------------------------------

@mcp.tool()
async def get_handicap(source: str, golfer_id: str) -> Dict[str, Any]:
    """Get one golfer's handicap index and every club they belong to.

    Args:
        source: Handicap source, e.g. 'ghin'
        golfer_id: The golfer's GHIN number
    """
    if not golfer_id.strip():
        return {"error": "golfer_id is required.", "status": "unknown"}

    try:
        player = await _get_provider(source).get_handicap(golfer_id.strip())
    except (HandicapError, httpx.HTTPError, ValueError) as e:
        logger.error("%s for %s: %s", type(e).__name__, source, golfer_id)
        return _error(e)
    return player.model_dump()


@mcp.tool()
async def search_player(
    source: str = "ghin",
    golfer_id: str = "",
    first_name: str = "",
    last_name: str = "",
    state: str = "",
    country: str = "",
    email: str = "",
    page: int = 1,
    per_page: int = 25,
) -> Dict[str, Any]:
    """Search active golfers by GHIN number, name, state or country.

    A search by golfer_id returns a single player listing all of their clubs;
    any other search returns one entry per golfer/club pair.

    Args:
        source: Handicap source, e.g. 'ghin'
        golfer_id: GHIN number to look up
        first_name: First name (prefix match upstream)
        last_name: Last name
        state: State code, e.g. 'US-MN'
        country: Country code, e.g. 'USA'
        email: Golfer email address
        page: Page number for pagination
        per_page: Results per page (1-100)
    """
    try:
        query = SearchQuery(
            source=source,
            golfer_id=golfer_id,
            first_name=first_name,
            last_name=last_name,
            state=state,
            country=country,
            email=email,
        )
        pagination = Pagination(page=max(1, page), per_page=per_page)
        players = await _get_provider(source).search_player(query, pagination)
    except (HandicapError, httpx.HTTPError, ValueError) as e:
        logger.error("%s for %s page %d: %s", type(e).__name__, source, page, e)
        return _error(e)
    return {"players": [p.model_dump() for p in players]}


@mcp.tool()
async def request_product_access(source: str, golfer_id: str, email: str) -> Dict[str, Any]:
    """Ask GHIN to send a golfer product access invitation to an email address.

    Args:
        source: Handicap source, e.g. 'ghin'
        golfer_id: The golfer's GHIN number
        email: Address the invitation is sent to
    """
    try:
        validated = ProductAccessRequest(source=source, golfer_id=golfer_id, email=email)
        result = await _get_provider(source).request_product_access(
            validated.golfer_id, validated.email
        )
    except (HandicapError, httpx.HTTPError, ValueError) as e:
        logger.error("%s for %s: %s", type(e).__name__, golfer_id, email)
        return _error(e)

    logger.info("Requested product access for golfer %s", golfer_id)
    return result.model_dump()


# ---------------------------------------------------------------------------
# Tools - Courses & Tees
# ---------------------------------------------------------------------------

@mcp.tool()
async def get_course(
    source: str,
    course_id: str,
    include_altered_tees: bool = False,
) -> Dict[str, Any]:
    """Get a course with its facility, season and tee sets (ratings and holes).

    Args:
        source: Handicap source, e.g. 'ghin'
        course_id: GHIN course id
        include_altered_tees: Include altered tee sets
    """
    try:
        query = CourseQuery(
            source=source,
            course_id=course_id,
            include_altered_tees=include_altered_tees,
        )
        course = await _get_provider(source).get_course(query)
    except (HandicapError, httpx.HTTPError, ValueError) as e:
        logger.error("%s for course %s", type(e).__name__, course_id)
        return _error(e)
    return course.model_dump()


@mcp.tool()
async def search_course(
    source: str = "ghin",
    name: str = "",
    state: str = "",
    country: str = "",
    facility_id: str = "",
) -> Dict[str, Any]:
    """Search courses by name, state, country or facility.

    Args:
        source: Handicap source, e.g. 'ghin'
        name: Course or facility name
        state: State code, e.g. 'US-MN'
        country: Country code, e.g. 'USA'
        facility_id: GHIN facility id
    """
    try:
        query = CourseSearchQuery(
            source=source,
            name=name,
            state=state,
            country=country,
            facility_id=facility_id,
        )
        if not any((query.name, query.state, query.country, query.facility_id)):
            return {"error": "At least one search field is required.", "status": "unknown"}
        courses = await _get_provider(source).search_course(query)
    except (HandicapError, httpx.HTTPError, ValueError) as e:
        logger.error("%s for course search '%s'", type(e).__name__, name)
        return _error(e)
    return {"courses": [c.model_dump() for c in courses]}


@mcp.tool()
async def get_tees(
    source: str,
    course_id: str,
    gender: Optional[str] = None,
    tee_set_status: str = "Active",
) -> Dict[str, Any]:
    """Get the tee sets of a course with their ratings and hole tables.

    Args:
        source: Handicap source, e.g. 'ghin'
        course_id: GHIN course id
        gender: 'M' or 'F' to restrict to one gender
        tee_set_status: Tee set status filter (default: "Active")
    """
    try:
        query = TeeQuery(
            source=source,
            course_id=course_id,
            gender=gender or "",
            tee_set_status=tee_set_status,
        )
        tees = await _get_provider(source).get_tees(query)
    except (HandicapError, httpx.HTTPError, ValueError) as e:
        logger.error("%s for tees of course %s", type(e).__name__, course_id)
        return _error(e)
    return {"tees": [t.model_dump() for t in tees]}


# ---------------------------------------------------------------------------
# Entry Point
# ---------------------------------------------------------------------------

def main() -> None:
    """Entry point for the ghin-handicap-mcp command."""
    if not GHIN_USERNAME or not GHIN_PASSWORD:
        logger.error("GHIN_USERNAME and GHIN_PASSWORD environment variables must be set.")
        print("Error: GHIN_USERNAME and GHIN_PASSWORD environment variables must be set.")
        print("Please set your GHIN account credentials and try again.")
        sys.exit(1)

    logger.info("Starting GHIN Handicap MCP Server")
    mcp.run()


if __name__ == "__main__":
    main()
