"""iCalendar (RFC 5545) export for a single appointment."""

from datetime import datetime
from typing import Optional

from app.models.appointment import Appointment, AppointmentKind, ServiceChannel

PRODID = "-//LaFade//Booking//EN"

KIND_LABELS = {
    AppointmentKind.TRIAL_FREE: "First cut (free)",
    AppointmentKind.DISCOUNT_SECOND: "Second cut",
    AppointmentKind.MEMBERSHIP_INCLUDED: "Membership cut",
    AppointmentKind.ONE_OFF: "Haircut",
}


def _format_utc(value: datetime) -> str:
    return value.strftime("%Y%m%dT%H%M%SZ")


def _escape(text: str) -> str:
    return (
        text.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\n", "\\n")
    )


def _fold(line: str) -> str:
    # Content lines longer than 75 octets are continued with CRLF + space
    if len(line) <= 75:
        return line
    chunks = [line[:75]]
    rest = line[75:]
    while rest:
        chunks.append(" " + rest[:74])
        rest = rest[74:]
    return "\r\n".join(chunks)


def build_ics(appointment: Appointment, barber_name: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """Return a VCALENDAR with one VEVENT. Times are written as UTC."""
    now = now or datetime.utcnow()
    summary = KIND_LABELS.get(appointment.kind, "Haircut")
    if barber_name:
        summary = f"{summary} with {barber_name}"

    if appointment.channel == ServiceChannel.HOME and appointment.address:
        location = appointment.address
    else:
        location = "LaFade Barbershop"

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODID}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        "BEGIN:VEVENT",
        f"UID:{appointment.id}@lafade",
        f"DTSTAMP:{_format_utc(now)}",
        f"DTSTART:{_format_utc(appointment.start_at)}",
        f"DTEND:{_format_utc(appointment.end_at)}",
        f"SUMMARY:{_escape(summary)}",
        f"LOCATION:{_escape(location)}",
    ]
    if appointment.notes:
        lines.append(f"DESCRIPTION:{_escape(appointment.notes)}")
    lines += [
        "STATUS:CONFIRMED",
        "END:VEVENT",
        "END:VCALENDAR",
    ]
    return "\r\n".join(_fold(line) for line in lines) + "\r\n"
