"""Map GHIN response payloads onto the service's response models.

Every function here is pure. Absent or null upstream fields fall back to the
zero value of the target field ("" / 0 / 0.0 / False) instead of raising.
"""

from __future__ import annotations

from typing import Any, Dict, List, Tuple, Type

from pydantic import BaseModel

from errors import EmptyResultError
from models import Club, Course, Hole, PlayerResult, ProductAccessResult, Rating, Tee

# ---------------------------------------------------------------------------
# Field tables
#
# GET /courses/{id}.json and GET /courses/search.json name the same fields
# differently (CourseId vs CourseID, CourseCity vs City, nested Facility and
# Season objects vs flat keys). Keep the two tables separate.
# ---------------------------------------------------------------------------

Path = Tuple[str, ...]

COURSE_FIELDS: Dict[str, Path] = {
    "course_id": ("CourseId",),
    "course_status": ("CourseStatus",),
    "course_name": ("CourseName",),
    "city": ("CourseCity",),
    "state": ("CourseState",),
    "facility_id": ("Facility", "FacilityId"),
    "facility_status": ("Facility", "FacilityStatus"),
    "facility_name": ("Facility", "FacilityName"),
    "geo_location_formatted_address": ("Facility", "GeoLocationFormattedAddress"),
    "geo_location_latitude": ("Facility", "GeoLocationLatitude"),
    "geo_location_longitude": ("Facility", "GeoLocationLongitude"),
    "season_name": ("Season", "SeasonName"),
    "season_start_date": ("Season", "SeasonStartDate"),
    "season_end_date": ("Season", "SeasonEndDate"),
    "is_all_year": ("Season", "IsAllYear"),
}

SEARCH_COURSE_FIELDS: Dict[str, Path] = {
    "course_id": ("CourseID",),
    "course_status": ("CourseStatus",),
    "course_name": ("CourseName",),
    "facility_id": ("FacilityID",),
    "facility_name": ("FacilityName",),
    "full_name": ("FullName",),
    "address1": ("Address1",),
    "address2": ("Address2",),
    "city": ("City",),
    "state": ("State",),
    "country": ("Country",),
    "geo_location_latitude": ("GeoLocationLatitude",),
    "geo_location_longitude": ("GeoLocationLongitude",),
    "updated_on": ("UpdatedOn",),
}

TEE_FIELDS: Dict[str, Path] = {
    "tee_id": ("TeeSetRatingId",),
    "tee_name": ("TeeSetRatingName",),
    "gender": ("Gender",),
    "holes_number": ("HolesNumber",),
    "total_yardage": ("TotalYardage",),
    "total_meters": ("TotalMeters",),
    "total_par": ("TotalPar",),
}

RATING_FIELDS: Dict[str, Path] = {
    "rating_type": ("RatingType",),
    "course_rating": ("CourseRating",),
    "slope_rating": ("SlopeRating",),
    "bogey_rating": ("BogeyRating",),
}

HOLE_FIELDS: Dict[str, Path] = {
    "number": ("Number",),
    "hole_id": ("HoleId",),
    "length": ("Length",),
    "par": ("Par",),
    "allocation": ("Allocation",),
}


# ---------------------------------------------------------------------------
# Scalar helpers
# ---------------------------------------------------------------------------

def _str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _int(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        try:
            return int(float(value))
        except (TypeError, ValueError, OverflowError):
            return 0


def _float(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0


def _bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _int_str(value: Any) -> str:
    """Integer ids rendered as strings; an absent id becomes "0"."""
    return str(_int(value))


_CONVERTERS = {str: _str, int: _int, float: _float, bool: _bool}


def _lookup(raw: Any, path: Path) -> Any:
    value = raw
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def _list(raw: Any, key: str) -> List[Dict[str, Any]]:
    """Return raw[key] (or raw itself when it is already a list) as a list of dicts."""
    if isinstance(raw, list):
        items = raw
    elif isinstance(raw, dict):
        items = raw.get(key)
        if not isinstance(items, list):
            items = []
    else:
        items = []
    return [item for item in items if isinstance(item, dict)]


def _map_fields(raw: Any, table: Dict[str, Path], model: Type[BaseModel]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for name, path in table.items():
        convert = _CONVERTERS[type(model.model_fields[name].default)]
        values[name] = convert(_lookup(raw, path))
    return values


# ---------------------------------------------------------------------------
# Players
# ---------------------------------------------------------------------------

def _club(row: Dict[str, Any]) -> Club:
    return Club(
        id=_int_str(row.get("club_id")),
        name=_str(row.get("club_name")),
        assn=_int_str(row.get("club_affiliation_id")),
        state=_str(row.get("state")),
        country=_str(row.get("country")),
    )


def _player(row: Dict[str, Any], clubs: List[Club], source: str) -> PlayerResult:
    first_name = _str(row.get("first_name"))
    last_name = _str(row.get("last_name"))
    return PlayerResult(
        id=_str(row.get("ghin")),
        source=source,
        prefix=_str(row.get("prefix")),
        first_name=first_name,
        middle_name=_str(row.get("middle_name")),
        last_name=last_name,
        suffix=_str(row.get("suffix")),
        player_name=f"{first_name} {last_name}",
        gender=_str(row.get("gender")),
        active=True,
        index=_str(row.get("handicap_index")),
        rev_date=_str(row.get("rev_date")),
        clubs=clubs,
    )


def rollup_golfers(rows: List[Dict[str, Any]], source: str = "ghin") -> List[PlayerResult]:
    """Collapse every row into one player: personal fields from the first row, one club per row."""
    if not rows:
        raise EmptyResultError("No golfers in response")
    return [_player(rows[0], [_club(row) for row in rows], source)]


def fan_out_golfers(rows: List[Dict[str, Any]], source: str = "ghin") -> List[PlayerResult]:
    """One player per row, each with a single club."""
    return [_player(row, [_club(row)], source) for row in rows]


def normalize_players(payload: Any, scoped: bool, source: str = "ghin") -> List[PlayerResult]:
    """Normalize a golfer search payload.

    Args:
        payload: Decoded JSON body of the search endpoint ({"golfers": [...]})
        scoped: True when the search asked for one golfer id (rollup mode)
        source: Handicap source recorded on each player
    """
    rows = _list(payload, "golfers")
    if scoped:
        return rollup_golfers(rows, source)
    return fan_out_golfers(rows, source)


# ---------------------------------------------------------------------------
# Courses & Tees
# ---------------------------------------------------------------------------

def _rating(raw: Dict[str, Any]) -> Rating:
    return Rating(**_map_fields(raw, RATING_FIELDS, Rating))


def _hole(raw: Dict[str, Any]) -> Hole:
    return Hole(**_map_fields(raw, HOLE_FIELDS, Hole))


def _tee(raw: Dict[str, Any]) -> Tee:
    return Tee(
        **_map_fields(raw, TEE_FIELDS, Tee),
        ratings=[_rating(r) for r in _list(raw, "Ratings")],
        holes=[_hole(h) for h in _list(raw, "Holes")],
    )


def normalize_tees(payload: Any) -> List[Tee]:
    """Map a tee set payload (a list, or a dict holding TeeSets) to Tee records."""
    return [_tee(t) for t in _list(payload, "TeeSets")]


def normalize_course(payload: Any) -> Course:
    """Map a GET /courses/{id}.json payload, including its tee sets."""
    return Course(
        **_map_fields(payload, COURSE_FIELDS, Course),
        tees=normalize_tees(_lookup(payload, ("TeeSets",))),
    )


def normalize_course_search(payload: Any) -> List[Course]:
    """Map a GET /courses/search.json payload. Search results carry no tee sets."""
    return [
        Course(**_map_fields(c, SEARCH_COURSE_FIELDS, Course))
        for c in _list(payload, "courses")
    ]


def normalize_product_access(payload: Any) -> ProductAccessResult:
    return ProductAccessResult(success=_str(_lookup(payload, ("success",))))
