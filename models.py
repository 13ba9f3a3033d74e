"""Request and response models for the GHIN handicap service."""

from __future__ import annotations

import re
from typing import List

from pydantic import BaseModel, Field, field_validator

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _numeric_id(v: str, name: str) -> str:
    if not (v.isascii() and v.isdigit()):
        raise ValueError(f"{name} must be numeric")
    return v


# ---------------------------------------------------------------------------
# Players
# ---------------------------------------------------------------------------


class Club(BaseModel):
    """One club membership of a golfer."""
    id: str = ""
    name: str = ""
    assn: str = ""
    state: str = ""
    country: str = ""


class PlayerResult(BaseModel):
    """A single golfer with every club membership found for them."""
    id: str = ""
    source: str = ""
    prefix: str = ""
    first_name: str = ""
    middle_name: str = ""
    last_name: str = ""
    suffix: str = ""
    player_name: str = ""
    gender: str = ""
    active: bool = True
    index: str = ""
    rev_date: str = ""
    clubs: List[Club] = Field(default_factory=list)


class ProductAccessResult(BaseModel):
    success: str = ""


# ---------------------------------------------------------------------------
# Courses & Tees
# ---------------------------------------------------------------------------


class Rating(BaseModel):
    rating_type: str = ""
    course_rating: float = 0.0
    slope_rating: int = 0
    bogey_rating: float = 0.0


class Hole(BaseModel):
    number: int = 0
    hole_id: int = 0
    length: int = 0
    par: int = 0
    allocation: int = 0


class Tee(BaseModel):
    tee_id: int = 0
    tee_name: str = ""
    gender: str = ""
    holes_number: int = 0
    total_yardage: int = 0
    total_meters: int = 0
    total_par: int = 0
    ratings: List[Rating] = Field(default_factory=list)
    holes: List[Hole] = Field(default_factory=list)


class Course(BaseModel):
    course_id: int = 0
    course_status: str = ""
    course_name: str = ""
    facility_id: int = 0
    facility_status: str = ""
    facility_name: str = ""
    full_name: str = ""
    address1: str = ""
    address2: str = ""
    city: str = ""
    state: str = ""
    country: str = ""
    geo_location_formatted_address: str = ""
    geo_location_latitude: float = 0.0
    geo_location_longitude: float = 0.0
    season_name: str = ""
    season_start_date: str = ""
    season_end_date: str = ""
    is_all_year: bool = False
    updated_on: str = ""
    tees: List[Tee] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Validated requests
# ---------------------------------------------------------------------------


class SearchQuery(BaseModel):
    """Player search criteria. A non-empty golfer_id scopes the search to one golfer."""
    source: str = "ghin"
    golfer_id: str = ""
    country: str = ""
    state: str = ""
    last_name: str = ""
    first_name: str = ""
    email: str = ""

    @field_validator("golfer_id")
    @classmethod
    def validate_golfer_id(cls, v: str) -> str:
        return _numeric_id(v, "golfer_id") if v else v

    @property
    def is_scoped(self) -> bool:
        return bool(self.golfer_id)


class Pagination(BaseModel):
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=25, ge=1, le=100)


class CourseQuery(BaseModel):
    source: str = "ghin"
    course_id: str = Field(..., min_length=1)
    include_altered_tees: bool = False

    @field_validator("course_id")
    @classmethod
    def validate_course_id(cls, v: str) -> str:
        return _numeric_id(v, "course_id")


class CourseSearchQuery(BaseModel):
    source: str = "ghin"
    name: str = ""
    state: str = ""
    country: str = ""
    facility_id: str = ""


class TeeQuery(BaseModel):
    source: str = "ghin"
    course_id: str = Field(..., min_length=1)
    gender: str = ""
    tee_set_status: str = "Active"

    @field_validator("course_id")
    @classmethod
    def validate_course_id(cls, v: str) -> str:
        return _numeric_id(v, "course_id")


class ProductAccessRequest(BaseModel):
    """Validated input for requesting golfer product access."""
    source: str = "ghin"
    golfer_id: str = Field(..., min_length=1)
    email: str

    @field_validator("golfer_id")
    @classmethod
    def validate_golfer_id(cls, v: str) -> str:
        return _numeric_id(v, "golfer_id")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Invalid email format")
        return v
