# utils/data_processing_utils.py

from typing import Any, Dict, Optional
from flask import Request, jsonify
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from firebase_functions import logger

from .errors import ValidationError
from .geo_utils import Coordinate

CRASH_REQUEST_ERROR = "Valid 'crash_id', 'rideguard_id', 'lat' and 'long' are required"
NOTIFY_REQUEST_ERROR = "FCM token is required"


def add_cors_headers(response):
    """Add CORS headers to the response.

    Args:
        response: Either a Flask response object or a dictionary

    Returns:
        A Flask response object with CORS headers
    """
    # If response is a dict, convert it to a Flask response
    if isinstance(response, dict):
        response = jsonify(response)

    response.headers.set('Access-Control-Allow-Origin', '*')
    response.headers.set('Access-Control-Allow-Methods', 'POST, OPTIONS')
    response.headers.set('Access-Control-Allow-Headers', 'Content-Type')
    return response


def _reject_bool(value: Any) -> Any:
    if isinstance(value, bool):
        raise ValueError("boolean is not a coordinate")
    return value


class CrashReport(BaseModel):
    """Inbound crash event from a RideGuard device."""
    model_config = ConfigDict(str_strip_whitespace=True)

    crash_id: str = Field(min_length=1)
    rideguard_id: str = Field(min_length=1)
    lat: float = Field(ge=-90, le=90, allow_inf_nan=False)
    long: float = Field(ge=-180, le=180, allow_inf_nan=False)

    @field_validator("lat", "long", mode="before")
    @classmethod
    def _coordinates_are_numbers(cls, value):
        return _reject_bool(value)

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.lat, self.long)


class NotifyRequest(BaseModel):
    """Direct single-token notification request."""
    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(min_length=1)
    title: Optional[str] = None
    body: Optional[str] = None


def _request_json(request: Request) -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def parse_crash_request(request: Request) -> CrashReport:
    """Validate a crash report body, raising ValidationError on any bad field."""
    try:
        data = _request_json(request)
    except ValidationError as e:
        raise ValidationError(CRASH_REQUEST_ERROR) from e

    logger.info(f"Crash report received: crash_id={data.get('crash_id')}, rideguard_id={data.get('rideguard_id')}, "
                f"lat={data.get('lat')}, long={data.get('long')}")
    try:
        return CrashReport.model_validate(data)
    except PydanticValidationError as e:
        logger.info(f"Rejected crash report: {e.error_count()} invalid field(s)")
        raise ValidationError(CRASH_REQUEST_ERROR, {"errors": e.errors(include_url=False)}) from e


def parse_notify_request(request: Request) -> NotifyRequest:
    try:
        return NotifyRequest.model_validate(_request_json(request))
    except (ValidationError, PydanticValidationError) as e:
        raise ValidationError(NOTIFY_REQUEST_ERROR) from e
