from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from firebase_admin import firestore

from .auth import get_current_user, require_role
from .database import db, log_action
from .models import (
    AggregationFreightCreate,
    CommonFreightCreate,
    CompleteFreightCreate,
    FreightCreatedResponse,
    FreightStats,
    FreightStatus,
    FreightStatusUpdate,
    FreightType,
    NotificationType,
    Role,
)
from .notifications import notify_safely
from .utils import generate_freight_id, to_isoformat

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/freights", tags=["Freights"])

FREIGHTS = "freights"

_PREFIXES = {
    FreightType.AGREGAMENTO: "#AG",
    FreightType.COMPLETO: "#FC",
    FreightType.RETORNO: "#FR",
    FreightType.COMUM: "#FT",
}

_require_poster = require_role(Role.COMPANY, Role.ADMIN)


def _company_name(user: Dict[str, Any]) -> str:
    return user.get("tradingName") or user.get("name") or ""


def _serialize(data: Dict[str, Any], firestore_id: Optional[str] = None) -> Dict[str, Any]:
    out = dict(data)
    if firestore_id is not None:
        out["firestoreId"] = firestore_id
    out["createdAt"] = to_isoformat(data.get("createdAt"))
    return out


def _new_freight_doc(base: Dict[str, Any], *, company_id: str, company_name: str, freight_type: FreightType) -> Dict[str, Any]:
    doc = dict(base)
    doc.update({
        "id": generate_freight_id(_PREFIXES[freight_type]),
        "companyId": company_id,
        "companyName": company_name,
        "freightType": freight_type.value,
        "status": FreightStatus.ATIVO.value,
        "createdAt": firestore.SERVER_TIMESTAMP,
    })
    return doc


def add_aggregation_freight(company_id: str, company_name: str, data: Dict[str, Any]) -> List[str]:
    """One freight per destination, each with its own public id."""
    if not company_id:
        raise ValueError("ID da empresa é obrigatório.")
    destinations = list(data.get("destinations") or [])
    base = {k: v for k, v in data.items() if k != "destinations"}
    ids: List[str] = []
    for destination in destinations:
        doc = _new_freight_doc(base, company_id=company_id, company_name=company_name, freight_type=FreightType.AGREGAMENTO)
        doc["destinations"] = [destination]
        db.collection(FREIGHTS).document().set(doc)
        ids.append(doc["id"])
    return ids


def add_complete_freight(company_id: str, company_name: str, kind: str, data: Dict[str, Any]) -> str:
    """kind is "completo" or "retorno"."""
    if not company_id:
        raise ValueError("ID da empresa é obrigatório.")
    freight_type = FreightType.COMPLETO if kind == "completo" else FreightType.RETORNO
    doc = _new_freight_doc(data, company_id=company_id, company_name=company_name, freight_type=freight_type)
    db.collection(FREIGHTS).document().set(doc)
    return doc["id"]


def add_common_freight(company_id: str, company_name: str, data: Dict[str, Any]) -> str:
    if not company_id:
        raise ValueError("ID da empresa é obrigatório.")
    doc = _new_freight_doc(data, company_id=company_id, company_name=company_name, freight_type=FreightType.COMUM)
    db.collection(FREIGHTS).document().set(doc)
    return doc["id"]


def find_freight(freight_id: str):
    """Resolve a public freight id (e.g. #FC-12ABC) to its Firestore snapshot."""
    snaps = list(db.collection(FREIGHTS).where("id", "==", freight_id).limit(1).stream())
    if not snaps:
        raise LookupError(f"Frete com ID {freight_id} não encontrado.")
    return snaps[0]


def update_freight_status(freight_id: str, status: FreightStatus) -> Dict[str, Any]:
    if not freight_id or not status:
        raise ValueError("ID do frete e novo status são obrigatórios.")
    snap = find_freight(freight_id)
    db.collection(FREIGHTS).document(snap.id).update({"status": status.value})
    data = snap.to_dict() or {}
    data["status"] = status.value
    return data


def _place_label(place: Dict[str, Any]) -> str:
    return f"{(place or {}).get('city')}, {(place or {}).get('state')}"


def filter_freights(
    freights: List[Dict[str, Any]],
    *,
    origin_cities: Optional[List[str]] = None,
    destination_cities: Optional[List[str]] = None,
    freight_types: Optional[List[str]] = None,
    vehicles: Optional[List[str]] = None,
    body_types: Optional[List[str]] = None,
) -> List[Dict[str, Any]]:
    """Apply the search filters; an empty filter matches everything."""
    out = []
    for freight in freights:
        origin = _place_label(freight.get("origin"))
        if origin_cities and not any(city in origin for city in origin_cities):
            continue
        dests = [_place_label(d) for d in freight.get("destinations") or []]
        if destination_cities and not any(city in d for city in destination_cities for d in dests):
            continue
        if freight_types and freight.get("freightType") not in freight_types:
            continue
        if vehicles and not any(v in vehicles for v in freight.get("requiredVehicles") or []):
            continue
        if body_types and not any(b in body_types for b in freight.get("requiredBodyworks") or []):
            continue
        out.append(freight)
    return out


def count_by_status(freights: List[Dict[str, Any]]) -> FreightStats:
    stats = FreightStats(total=len(freights))
    for f in freights:
        status = f.get("status")
        if status == FreightStatus.ATIVO.value:
            stats.active += 1
        elif status == FreightStatus.PENDENTE.value:
            stats.pending += 1
        elif status == FreightStatus.CONCLUIDO.value:
            stats.completed += 1
        elif status == FreightStatus.CANCELADO.value:
            stats.cancelled += 1
    return stats


def _company_freights(company_id: str) -> List[Dict[str, Any]]:
    return [
        _serialize(s.to_dict() or {}, s.id)
        for s in db.collection(FREIGHTS).where("companyId", "==", company_id).stream()
    ]


# --- Posting ---

@router.post("/aggregation", response_model=FreightCreatedResponse, status_code=201)
def post_aggregation_freight(payload: AggregationFreightCreate, user: Dict[str, Any] = Depends(_require_poster)):
    ids = add_aggregation_freight(user["uid"], _company_name(user), payload.model_dump(mode="json"))
    log_action(user["uid"], "FREIGHT_POSTED", f"agregamento: {', '.join(ids)}")
    return FreightCreatedResponse(ids=ids)


@router.post("/complete", response_model=FreightCreatedResponse, status_code=201)
def post_complete_freight(payload: CompleteFreightCreate, user: Dict[str, Any] = Depends(_require_poster)):
    data = payload.model_dump(mode="json")
    kind = data.pop("freightType")
    freight_id = add_complete_freight(user["uid"], _company_name(user), kind, data)
    log_action(user["uid"], "FREIGHT_POSTED", f"{kind}: {freight_id}")
    return FreightCreatedResponse(ids=[freight_id])


@router.post("/common", response_model=FreightCreatedResponse, status_code=201)
def post_common_freight(payload: CommonFreightCreate, user: Dict[str, Any] = Depends(_require_poster)):
    freight_id = add_common_freight(user["uid"], _company_name(user), payload.model_dump(mode="json"))
    log_action(user["uid"], "FREIGHT_POSTED", f"comum: {freight_id}")
    return FreightCreatedResponse(ids=[freight_id])


# --- Search & company views ---

@router.get("")
def search_freights(
    originCities: Optional[List[str]] = Query(None),
    destinationCities: Optional[List[str]] = Query(None),
    freightTypes: Optional[List[str]] = Query(None),
    vehicles: Optional[List[str]] = Query(None),
    bodyTypes: Optional[List[str]] = Query(None),
):
    """Active freights matching every non-empty filter."""
    active = [
        _serialize(s.to_dict() or {})
        for s in db.collection(FREIGHTS).where("status", "==", FreightStatus.ATIVO.value).stream()
    ]
    items = filter_freights(
        active,
        origin_cities=originCities,
        destination_cities=destinationCities,
        freight_types=freightTypes,
        vehicles=vehicles,
        body_types=bodyTypes,
    )
    return {"freights": items, "total": len(items)}


@router.get("/mine")
def my_freights(user: Dict[str, Any] = Depends(require_role(Role.COMPANY))):
    items = _company_freights(user["uid"])
    items.sort(key=lambda f: f.get("createdAt") or "", reverse=True)
    return {"freights": items, "total": len(items)}


@router.get("/stats", response_model=FreightStats)
def my_freight_stats(user: Dict[str, Any] = Depends(require_role(Role.COMPANY))):
    return count_by_status(_company_freights(user["uid"]))


@router.get("/{freight_id}")
def get_freight(freight_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    try:
        snap = find_freight(freight_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _serialize(snap.to_dict() or {}, snap.id)


@router.patch("/{freight_id}/status")
def change_freight_status(freight_id: str, payload: FreightStatusUpdate, user: Dict[str, Any] = Depends(_require_poster)):
    try:
        current = find_freight(freight_id).to_dict() or {}
        if user.get("role") != Role.ADMIN.value and current.get("companyId") != user["uid"]:
            raise HTTPException(status_code=403, detail="Not authorized")
        updated = update_freight_status(freight_id, payload.status)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    log_action(user["uid"], "FREIGHT_STATUS", f"{freight_id} -> {payload.status.value}")
    if updated.get("companyId"):
        notify_safely(
            updated["companyId"],
            "Status do frete atualizado",
            f"O frete {freight_id} agora está {payload.status.value}.",
            NotificationType.FREIGHT_STATUS_CHANGED,
        )
    return {"id": freight_id, "status": payload.status.value}
