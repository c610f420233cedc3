from __future__ import annotations

import math
from typing import Any

from incident_relay.domain.errors import ValidationError
from incident_relay.domain.models import Location


def validate_location(latitude: Any, longitude: Any) -> Location:
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"malformed location: {latitude!r}, {longitude!r}") from exc

    if math.isnan(lat) or math.isnan(lon):
        raise ValidationError("malformed location: NaN coordinate")
    if not -90.0 <= lat <= 90.0:
        raise ValidationError(f"latitude out of range: {lat}")
    if not -180.0 <= lon <= 180.0:
        raise ValidationError(f"longitude out of range: {lon}")

    return Location(latitude=lat, longitude=lon)


def maps_link(location: Location) -> str:
    return f"http://maps.google.com/maps?q={location.latitude},{location.longitude}"
