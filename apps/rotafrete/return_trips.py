from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from firebase_admin import firestore

from .auth import require_active, require_role
from .database import db, log_action
from .models import ReturnDestination, ReturnTripCreate, ReturnTripStatusUpdate, Role
from .utils import snapshot_to_dict, to_isoformat

router = APIRouter(prefix="/return-trips", tags=["Return trips"])

RETURN_TRIPS = "return_trips"


def validate_destination(dest: ReturnDestination) -> None:
    if dest.destinationType == "estado" and not (dest.destinationState or "").strip():
        raise ValueError("O estado é obrigatório.")
    if dest.destinationType == "cidade" and not ((dest.destinationState or "").strip() and (dest.destinationCity or "").strip()):
        raise ValueError("Estado e cidade são obrigatórios.")


def add_return_trips(driver_id: str, trip: ReturnTripCreate) -> List[str]:
    """Store one return_trips document per announced destination."""
    if not driver_id:
        raise ValueError("ID do motorista é obrigatório.")
    for dest in trip.returns:
        validate_destination(dest)

    base = trip.model_dump(exclude={"returns"})
    ids: List[str] = []
    for dest in trip.returns:
        ref = db.collection(RETURN_TRIPS).document()
        doc = dict(base)
        doc.update({
            "driverId": driver_id,
            "destinationType": dest.destinationType,
            # "brasil" means any destination in the country.
            "destinationState": dest.destinationState if dest.destinationType != "brasil" else None,
            "destinationCity": dest.destinationCity if dest.destinationType == "cidade" else None,
            "status": "active",
            "createdAt": firestore.SERVER_TIMESTAMP,
        })
        ref.set(doc)
        ids.append(ref.id)
    return ids


def _serialize(snap) -> Dict[str, Any]:
    data = snapshot_to_dict(snap)
    data["departureDate"] = to_isoformat(data.get("departureDate"))
    data["createdAt"] = to_isoformat(data.get("createdAt"))
    return data


_require_driver = require_role(Role.DRIVER)


@router.post("", status_code=201)
def create_return_trips(payload: ReturnTripCreate, user: Dict[str, Any] = Depends(_require_driver)):
    require_active(user)
    try:
        ids = add_return_trips(user["uid"], payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    log_action(user["uid"], "RETURN_TRIPS_CREATED", f"{len(ids)} destination(s)")
    return {"ids": ids}


@router.get("/mine")
def my_return_trips(user: Dict[str, Any] = Depends(_require_driver)):
    trips = [_serialize(s) for s in db.collection(RETURN_TRIPS).where("driverId", "==", user["uid"]).stream()]
    trips.sort(key=lambda t: t.get("departureDate") or "", reverse=True)
    return {"trips": trips, "total": len(trips)}


@router.get("")
def list_active_return_trips(user: Dict[str, Any] = Depends(require_role(Role.COMPANY, Role.ADMIN))):
    trips = [_serialize(s) for s in db.collection(RETURN_TRIPS).where("status", "==", "active").stream()]
    trips.sort(key=lambda t: t.get("departureDate") or "")
    return {"trips": trips, "total": len(trips)}


@router.patch("/{trip_id}")
def set_return_trip_status(trip_id: str, payload: ReturnTripStatusUpdate, user: Dict[str, Any] = Depends(_require_driver)):
    ref = db.collection(RETURN_TRIPS).document(trip_id)
    snap = ref.get()
    if not snap.exists:
        raise HTTPException(status_code=404, detail="Viagem de retorno não encontrada.")
    if (snap.to_dict() or {}).get("driverId") != user["uid"]:
        raise HTTPException(status_code=403, detail="Not authorized")
    ref.update({"status": payload.status})
    return {"id": trip_id, "status": payload.status}
