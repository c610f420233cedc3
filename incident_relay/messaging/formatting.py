from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from incident_relay.domain.location import maps_link
from incident_relay.domain.models import Location, Reporter
from incident_relay.domain.transitions import build_action_token

ACK_FORWARDED = "Your location has been forwarded to emergency response services."
ACK_INGEST_FAILED = "Sorry, there was an error processing your location."
ACK_INVALID_LOCATION = "Sorry, that location could not be understood."
ACK_UNKNOWN_ACTION = "Unknown action."
ACK_NOT_FOUND = "Incident not found."
ACK_UPDATE_FAILED = "Error updating status."


def build_report_text(reporter: Reporter, location: Location) -> str:
    return (
        "🚨 **New Incident Report!** 🚨\n\n"
        f"Reporter: {reporter.name} ({reporter.handle})\n"
        f"Location: Latitude {location.latitude}, Longitude {location.longitude}\n"
        f"[View on Google Maps]({maps_link(location)})\n\n"
        "_Please click a button below to update the status._"
    )


def build_action_keyboard(reporter_id: int) -> dict[str, Any]:
    return {
        "inline_keyboard": [
            [
                {"text": "Eagles 24 Tow", "callback_data": build_action_token("tow", "eagles", reporter_id)},
                {"text": "Other Tow", "callback_data": build_action_token("tow", "other", reporter_id)},
            ],
            [{"text": "Scene Cleared", "callback_data": build_action_token("scene", "cleared", reporter_id)}],
        ]
    }


def append_audit_line(text: str, status: str, actor: Reporter, at: datetime | None = None) -> str:
    at = at or datetime.now(timezone.utc)
    return f"{text}\n\n_Status: {status} (by {actor.handle} at {at.strftime('%H:%M:%S')})_"


def status_ack(status: str) -> str:
    return f"Status updated to: {status}"
