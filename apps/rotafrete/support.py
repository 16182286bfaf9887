from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException

from .auth import get_current_user, require_admin
from .database import db, log_action
from .models import NotificationType, Role, TicketCreate, TicketMessageCreate, TicketStatus
from .notifications import notify_safely
from .utils import snapshot_to_dict, to_isoformat, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/support", tags=["Support"])

TICKETS = "support_tickets"


def _serialize(data: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(data)
    for key in ("createdAt", "updatedAt"):
        out[key] = to_isoformat(data.get(key))
    return out


def open_ticket(user: Dict[str, Any], subject: str, message: str) -> Dict[str, Any]:
    """Create a ticket and its first message."""
    now = utcnow()
    ref = db.collection(TICKETS).document()
    ticket = {
        "userId": user["uid"],
        "userName": user.get("tradingName") or user.get("name") or user.get("email") or "",
        "userRole": user.get("role"),
        "subject": subject.strip(),
        "status": TicketStatus.ABERTO.value,
        "createdAt": now,
        "updatedAt": now,
    }
    ref.set(ticket)
    ref.collection("messages").document().set({
        "senderId": user["uid"],
        "senderRole": user.get("role"),
        "fromAdmin": False,
        "text": message,
        "createdAt": now,
    })
    return {"id": ref.id, **ticket}


def _load_ticket(ticket_id: str, user: Dict[str, Any]):
    ref = db.collection(TICKETS).document(ticket_id)
    snap = ref.get()
    if not snap.exists:
        raise HTTPException(status_code=404, detail="Chamado não encontrado.")
    data = snap.to_dict() or {}
    if user.get("role") != Role.ADMIN.value and data.get("userId") != user["uid"]:
        raise HTTPException(status_code=403, detail="Not authorized")
    return ref, data


def add_message(ticket_ref, ticket: Dict[str, Any], user: Dict[str, Any], text: str) -> Dict[str, Any]:
    """Append a reply; the ticket status flips to whoever must answer next."""
    if ticket.get("status") == TicketStatus.FECHADO.value:
        raise ValueError("Chamado fechado.")
    from_admin = user.get("role") == Role.ADMIN.value
    now = utcnow()
    msg_ref = ticket_ref.collection("messages").document()
    message = {"senderId": user["uid"], "senderRole": user.get("role"), "fromAdmin": from_admin, "text": text, "createdAt": now}
    msg_ref.set(message)
    status = TicketStatus.SUA_VEZ if from_admin else TicketStatus.ABERTO
    ticket_ref.update({"status": status.value, "updatedAt": now})
    return {"id": msg_ref.id, **message, "ticketStatus": status.value}


@router.post("/tickets", status_code=201)
def create_ticket(payload: TicketCreate, user: Dict[str, Any] = Depends(get_current_user)):
    ticket = open_ticket(user, payload.subject, payload.message)
    log_action(user["uid"], "SUPPORT_TICKET", ticket["id"])
    return _serialize(ticket)


@router.get("/tickets")
def my_tickets(user: Dict[str, Any] = Depends(get_current_user)):
    tickets = [_serialize(snapshot_to_dict(s)) for s in db.collection(TICKETS).where("userId", "==", user["uid"]).stream()]
    tickets.sort(key=lambda t: t.get("updatedAt") or "", reverse=True)
    return {"tickets": tickets, "total": len(tickets)}


@router.get("/tickets/all")
def all_tickets(status: str | None = None, admin: Dict[str, Any] = Depends(require_admin)):
    query = db.collection(TICKETS)
    if status:
        query = query.where("status", "==", status)
    tickets = [_serialize(snapshot_to_dict(s)) for s in query.stream()]
    tickets.sort(key=lambda t: t.get("updatedAt") or "", reverse=True)
    return {"tickets": tickets, "total": len(tickets)}


@router.get("/tickets/{ticket_id}/messages")
def get_messages(ticket_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    ref, _ = _load_ticket(ticket_id, user)
    messages: List[Dict[str, Any]] = [_serialize(snapshot_to_dict(s)) for s in ref.collection("messages").stream()]
    messages.sort(key=lambda m: m.get("createdAt") or "")
    return {"messages": messages}


@router.post("/tickets/{ticket_id}/messages", status_code=201)
def post_message(ticket_id: str, payload: TicketMessageCreate, user: Dict[str, Any] = Depends(get_current_user)):
    ref, ticket = _load_ticket(ticket_id, user)
    try:
        message = add_message(ref, ticket, user, payload.text)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if message["fromAdmin"] and ticket.get("userId"):
        notify_safely(
            ticket["userId"],
            "Resposta do suporte",
            f"Seu chamado \"{ticket.get('subject')}\" recebeu uma resposta.",
            NotificationType.GENERAL,
        )
    return _serialize(message)


@router.post("/tickets/{ticket_id}/close")
def close_ticket(ticket_id: str, admin: Dict[str, Any] = Depends(require_admin)):
    ref, _ = _load_ticket(ticket_id, admin)
    ref.update({"status": TicketStatus.FECHADO.value, "updatedAt": utcnow()})
    log_action(admin["uid"], "SUPPORT_TICKET_CLOSED", ticket_id)
    return {"id": ticket_id, "status": TicketStatus.FECHADO.value}
