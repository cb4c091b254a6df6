"""
UGC Portal - SLA & time metrics

Tickets: first response and resolution targets per priority (config.py).
Design requests: turnaround metrics and deadline status.
"""

from datetime import datetime, time, timezone
from typing import Optional

from config import TICKET_SLA_FIRST_RESPONSE_HOURS, TICKET_SLA_RESOLUTION_HOURS, parse_iso

RESPONSE_STATES = {"in_progress", "waiting_customer", "need_adjustment", "resolved", "closed"}


def _elapsed_ms(start: Optional[str], end: Optional[str]) -> Optional[int]:
    if not start or not end:
        return None
    return int((parse_iso(end) - parse_iso(start)).total_seconds() * 1000)


def _within(start: str, end: str, hours: int) -> bool:
    return (parse_iso(end) - parse_iso(start)).total_seconds() <= hours * 3600


def _priority(ticket: dict) -> str:
    priority = ticket.get("priority") or "medium"
    return priority if priority in TICKET_SLA_FIRST_RESPONSE_HOURS else "medium"


def ticket_sla_fields(ticket: dict, target: str, actor_id: str, now: str) -> dict:
    """
    Champs SLA à écrire avec une transition de ticket.
    - first_response_at: première sortie de 'open' par quelqu'un d'autre que le créateur
    - resolved_at: entrée en 'resolved' (ou 'closed' sans résolution préalable)
    """
    fields = {}
    priority = _priority(ticket)

    if (
        not ticket.get("first_response_at")
        and ticket.get("state") == "open"
        and target in RESPONSE_STATES
        and actor_id != ticket.get("created_by")
    ):
        fields["first_response_at"] = now
        fields["first_response_met"] = _within(
            ticket["created_at"], now, TICKET_SLA_FIRST_RESPONSE_HOURS[priority]
        )

    if target == "resolved" or (target == "closed" and not ticket.get("resolved_at")):
        fields["resolved_at"] = now
        fields["resolution_met"] = _within(
            ticket["created_at"], now, TICKET_SLA_RESOLUTION_HOURS[priority]
        )

    return fields


def _sla_status(met: Optional[bool]) -> str:
    if met is None:
        return "pending"
    return "met" if met else "breached"


def ticket_time_metrics(ticket: dict, now: str) -> dict:
    priority = _priority(ticket)
    return {
        "priority": priority,
        "first_response_target_hours": TICKET_SLA_FIRST_RESPONSE_HOURS[priority],
        "resolution_target_hours": TICKET_SLA_RESOLUTION_HOURS[priority],
        "time_to_first_response_ms": _elapsed_ms(ticket.get("created_at"), ticket.get("first_response_at")),
        "time_to_resolution_ms": _elapsed_ms(ticket.get("created_at"), ticket.get("resolved_at")),
        "first_response_status": _sla_status(ticket.get("first_response_met")),
        "resolution_status": _sla_status(ticket.get("resolution_met")),
        "age_ms": _elapsed_ms(ticket.get("created_at"), now),
    }


def _end_of_day(deadline: str) -> datetime:
    return datetime.combine(datetime.fromisoformat(deadline[:10]).date(), time(23, 59, 59), tzinfo=timezone.utc)


def design_request_time_metrics(req: dict, now: str) -> dict:
    metrics = {
        "time_to_accept_ms": _elapsed_ms(req.get("submitted_at"), req.get("accepted_at")),
        "time_to_first_delivery_ms": _elapsed_ms(req.get("accepted_at"), req.get("first_delivered_at")),
        "total_turnaround_ms": _elapsed_ms(req.get("submitted_at"), req.get("approved_at")),
        "sla_status": None,
    }
    deadline = req.get("deadline")
    if deadline and req.get("approved_at"):
        on_time = parse_iso(req["approved_at"]) <= _end_of_day(deadline)
        metrics["sla_status"] = "on_time" if on_time else "overdue"
    elif deadline and req.get("state") != "cancelled":
        on_track = parse_iso(now) <= _end_of_day(deadline)
        metrics["sla_status"] = "on_track" if on_track else "at_risk"
    return metrics


def time_metrics(entity_type: str, doc: dict, now: str) -> dict:
    if entity_type == "ticket":
        return ticket_time_metrics(doc, now)
    if entity_type == "design_request":
        return design_request_time_metrics(doc, now)
    return {}
