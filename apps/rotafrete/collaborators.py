from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException

from .auth import require_role
from .database import db, log_action
from .freights import FREIGHTS, _serialize
from .models import Collaborator, CollaboratorIn, CollaboratorStats, CollaboratorUpdate, FreightStatus, Role
from .utils import snapshot_to_dict

router = APIRouter(prefix="/collaborators", tags=["Collaborators"])


def _collection(company_id: str):
    return db.collection("users").document(company_id).collection("collaborators")


def list_collaborators(company_id: str) -> List[Dict[str, Any]]:
    items = [snapshot_to_dict(s) for s in _collection(company_id).stream()]
    items.sort(key=lambda c: str(c.get("name") or "").lower())
    return items


def add_collaborator(company_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    if not company_id:
        raise ValueError("ID da empresa é obrigatório.")
    ref = _collection(company_id).document()
    ref.set(dict(data))
    return {"id": ref.id, **data}


def update_collaborator(company_id: str, collaborator_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    ref = _collection(company_id).document(collaborator_id)
    snap = ref.get()
    if not snap.exists:
        raise LookupError("Colaborador não encontrado.")
    if data:
        ref.update(dict(data))
    merged = snapshot_to_dict(snap)
    merged.update(data)
    return merged


def delete_collaborator(company_id: str, collaborator_id: str) -> None:
    ref = _collection(company_id).document(collaborator_id)
    if not ref.get().exists:
        raise LookupError("Colaborador não encontrado.")
    ref.delete()


def freights_by_collaborator(company_id: str, collaborator_id: str) -> List[Dict[str, Any]]:
    snaps = (
        db.collection(FREIGHTS)
        .where("companyId", "==", company_id)
        .where("responsibleCollaborators", "array_contains", collaborator_id)
        .stream()
    )
    return [_serialize(s.to_dict() or {}, s.id) for s in snaps]


def collaborator_stats(company_id: str, collaborator_id: str) -> CollaboratorStats:
    freights = freights_by_collaborator(company_id, collaborator_id)
    return CollaboratorStats(
        totalFreights=len(freights),
        activeFreights=sum(1 for f in freights if f.get("status") == FreightStatus.ATIVO.value),
        completedFreights=sum(1 for f in freights if f.get("status") == FreightStatus.CONCLUIDO.value),
    )


_require_company = require_role(Role.COMPANY)


@router.get("", response_model=List[Collaborator])
def get_collaborators(user: Dict[str, Any] = Depends(_require_company)):
    return list_collaborators(user["uid"])


@router.post("", response_model=Collaborator, status_code=201)
def create_collaborator(payload: CollaboratorIn, user: Dict[str, Any] = Depends(_require_company)):
    created = add_collaborator(user["uid"], payload.model_dump())
    log_action(user["uid"], "COLLABORATOR_ADDED", created["id"])
    return created


@router.patch("/{collaborator_id}", response_model=Collaborator)
def edit_collaborator(collaborator_id: str, payload: CollaboratorUpdate, user: Dict[str, Any] = Depends(_require_company)):
    try:
        return update_collaborator(user["uid"], collaborator_id, payload.model_dump(exclude_none=True))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/{collaborator_id}", status_code=204)
def remove_collaborator(collaborator_id: str, user: Dict[str, Any] = Depends(_require_company)):
    try:
        delete_collaborator(user["uid"], collaborator_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    log_action(user["uid"], "COLLABORATOR_REMOVED", collaborator_id)


@router.get("/{collaborator_id}/stats", response_model=CollaboratorStats)
def get_collaborator_stats(collaborator_id: str, user: Dict[str, Any] = Depends(_require_company)):
    return collaborator_stats(user["uid"], collaborator_id)


@router.get("/{collaborator_id}/freights")
def get_collaborator_freights(collaborator_id: str, user: Dict[str, Any] = Depends(_require_company)):
    items = freights_by_collaborator(user["uid"], collaborator_id)
    return {"freights": items, "total": len(items)}
