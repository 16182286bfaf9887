"""
Reference lookup lists used by freight posting and search.

Collections: vehicle_categories, vehicle_types, body_types, vehicles.
Reads are public; writes are admin-only single-document operations.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException

from .auth import require_admin
from .database import db, log_action
from .models import (
    BodyType,
    BodyTypeIn,
    Vehicle,
    VehicleCategory,
    VehicleCategoryIn,
    VehicleIn,
    VehicleType,
    VehicleTypeIn,
    VehicleUpdate,
)
from .utils import snapshot_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/catalog", tags=["Catalog"])

CATEGORIES = "vehicle_categories"
VEHICLE_TYPES = "vehicle_types"
BODY_TYPES = "body_types"
VEHICLES = "vehicles"


def list_items(collection: str) -> List[Dict[str, Any]]:
    items = [snapshot_to_dict(s) for s in db.collection(collection).stream()]
    items.sort(key=lambda d: str(d.get("name") or d.get("model") or "").lower())
    return items


def add_item(collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
    ref = db.collection(collection).document()
    ref.set(dict(data))
    return {"id": ref.id, **data}


def update_item(collection: str, item_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    ref = db.collection(collection).document(item_id)
    snap = ref.get()
    if not snap.exists:
        raise LookupError(f"{collection}/{item_id} not found")
    if data:
        ref.update(dict(data))
    merged = snapshot_to_dict(snap)
    merged.update(data)
    return merged


def delete_item(collection: str, item_id: str) -> None:
    ref = db.collection(collection).document(item_id)
    if not ref.get().exists:
        raise LookupError(f"{collection}/{item_id} not found")
    ref.delete()


def group_vehicle_types(types: List[Dict[str, Any]], categories: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    """Vehicle types keyed by category name; unknown categories land in "Outros"."""
    names = {c["id"]: c.get("name") for c in categories}
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for vt in types:
        grouped.setdefault(names.get(vt.get("categoryId")) or "Outros", []).append(vt)
    return grouped


def group_body_types(body_types: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for bt in body_types:
        grouped.setdefault(bt.get("group") or "Outros", []).append(bt)
    return grouped


def _mutate(fn, *args, what: str, admin: Dict[str, Any]):
    try:
        result = fn(*args)
    except LookupError:
        raise HTTPException(status_code=404, detail=f"{what} não encontrado(a).")
    log_action(admin.get("uid"), "CATALOG_CHANGE", f"{fn.__name__} on {args[0]}")
    return result


# --- Vehicle categories ---

@router.get("/vehicle-categories", response_model=List[VehicleCategory])
def get_vehicle_categories():
    return list_items(CATEGORIES)


@router.post("/vehicle-categories", response_model=VehicleCategory, status_code=201)
def create_vehicle_category(payload: VehicleCategoryIn, admin: Dict[str, Any] = Depends(require_admin)):
    return _mutate(add_item, CATEGORIES, payload.model_dump(), what="Categoria", admin=admin)


@router.put("/vehicle-categories/{category_id}", response_model=VehicleCategory)
def edit_vehicle_category(category_id: str, payload: VehicleCategoryIn, admin: Dict[str, Any] = Depends(require_admin)):
    return _mutate(update_item, CATEGORIES, category_id, payload.model_dump(), what="Categoria", admin=admin)


@router.delete("/vehicle-categories/{category_id}", status_code=204)
def remove_vehicle_category(category_id: str, admin: Dict[str, Any] = Depends(require_admin)):
    _mutate(delete_item, CATEGORIES, category_id, what="Categoria", admin=admin)


# --- Vehicle types ---

@router.get("/vehicle-types", response_model=List[VehicleType])
def get_vehicle_types():
    return list_items(VEHICLE_TYPES)


@router.get("/vehicle-types/grouped")
def get_vehicle_types_grouped():
    return group_vehicle_types(list_items(VEHICLE_TYPES), list_items(CATEGORIES))


@router.post("/vehicle-types", response_model=VehicleType, status_code=201)
def create_vehicle_type(payload: VehicleTypeIn, admin: Dict[str, Any] = Depends(require_admin)):
    return _mutate(add_item, VEHICLE_TYPES, payload.model_dump(), what="Tipo de veículo", admin=admin)


@router.put("/vehicle-types/{type_id}", response_model=VehicleType)
def edit_vehicle_type(type_id: str, payload: VehicleTypeIn, admin: Dict[str, Any] = Depends(require_admin)):
    return _mutate(update_item, VEHICLE_TYPES, type_id, payload.model_dump(), what="Tipo de veículo", admin=admin)


@router.delete("/vehicle-types/{type_id}", status_code=204)
def remove_vehicle_type(type_id: str, admin: Dict[str, Any] = Depends(require_admin)):
    _mutate(delete_item, VEHICLE_TYPES, type_id, what="Tipo de veículo", admin=admin)


# --- Body types ---

@router.get("/body-types", response_model=List[BodyType])
def get_body_types():
    return list_items(BODY_TYPES)


@router.get("/body-types/grouped")
def get_body_types_grouped():
    return group_body_types(list_items(BODY_TYPES))


@router.post("/body-types", response_model=BodyType, status_code=201)
def create_body_type(payload: BodyTypeIn, admin: Dict[str, Any] = Depends(require_admin)):
    return _mutate(add_item, BODY_TYPES, payload.model_dump(), what="Tipo de carroceria", admin=admin)


@router.put("/body-types/{body_type_id}", response_model=BodyType)
def edit_body_type(body_type_id: str, payload: BodyTypeIn, admin: Dict[str, Any] = Depends(require_admin)):
    return _mutate(update_item, BODY_TYPES, body_type_id, payload.model_dump(), what="Tipo de carroceria", admin=admin)


@router.delete("/body-types/{body_type_id}", status_code=204)
def remove_body_type(body_type_id: str, admin: Dict[str, Any] = Depends(require_admin)):
    _mutate(delete_item, BODY_TYPES, body_type_id, what="Tipo de carroceria", admin=admin)


# --- Vehicles ---

@router.get("/vehicles", response_model=List[Vehicle])
def get_vehicles(admin: Dict[str, Any] = Depends(require_admin)):
    return list_items(VEHICLES)


@router.post("/vehicles", response_model=Vehicle, status_code=201)
def create_vehicle(payload: VehicleIn, admin: Dict[str, Any] = Depends(require_admin)):
    return _mutate(add_item, VEHICLES, payload.model_dump(), what="Veículo", admin=admin)


@router.patch("/vehicles/{vehicle_id}", response_model=Vehicle)
def edit_vehicle(vehicle_id: str, payload: VehicleUpdate, admin: Dict[str, Any] = Depends(require_admin)):
    return _mutate(update_item, VEHICLES, vehicle_id, payload.model_dump(exclude_none=True), what="Veículo", admin=admin)


@router.delete("/vehicles/{vehicle_id}", status_code=204)
def remove_vehicle(vehicle_id: str, admin: Dict[str, Any] = Depends(require_admin)):
    _mutate(delete_item, VEHICLES, vehicle_id, what="Veículo", admin=admin)
