from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException

from .auth import require_admin
from .catalog import add_item, delete_item, list_items, update_item
from .database import db, log_action
from .models import AssignPlanRequest, NotificationType, Plan, PlanIn, PlanUpdate
from .notifications import notify_safely

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/plans", tags=["Plans"])

PLANS = "plans"


def _now() -> float:
    return float(time.time())


def plan_features(plan: Dict[str, Any]) -> List[str]:
    """Human-readable feature bullets shown on the billing page."""
    features: List[str] = []

    if plan.get("freightLimitType") == "unlimited":
        features.append("Solicitação de fretes ilimitada")
    elif plan.get("freightLimit") is not None:
        features.append(f"{plan['freightLimit']} solicitações de frete/mês")

    allowed = plan.get("allowedFreightTypes") or {}
    labels = [label for key, label in (("agregamento", "Agregamento"), ("completo", "Completo"), ("retorno", "Retorno")) if allowed.get(key)]
    if labels:
        features.append(f"Acesso aos fretes: {', '.join(labels)}")

    if plan.get("collaboratorLimitType") == "unlimited":
        features.append("Colaboradores ilimitados")
    elif plan.get("collaboratorLimit") is not None:
        features.append(f"{plan['collaboratorLimit']} colaboradores")

    if plan.get("hasStatisticsAccess"):
        features.append("Acesso a estatísticas de desempenho")
    if plan.get("hasReturningDriversAccess"):
        features.append("Acesso a motoristas de retorno")

    features.append("Suporte Prioritário")
    return features


def _with_features(plan: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(plan)
    out["features"] = plan_features(plan)
    return out


def get_plan(plan_id: str) -> Dict[str, Any]:
    snap = db.collection(PLANS).document(plan_id).get()
    if not snap.exists:
        raise LookupError(f"plan {plan_id} not found")
    data = snap.to_dict() or {}
    data["id"] = snap.id
    return data


def assign_plan(user_id: str, plan_id: str, *, now: Optional[float] = None) -> Dict[str, Any]:
    """Activate a plan on a user; expiry is now + durationDays."""
    if not user_id:
        raise ValueError("ID do usuário é obrigatório.")
    plan = get_plan(plan_id)
    user_ref = db.collection("users").document(user_id)
    if not user_ref.get().exists:
        raise LookupError(f"user {user_id} not found")

    now = _now() if now is None else float(now)
    patch = {
        "activePlanId": plan["id"],
        "activePlanName": plan.get("name"),
        "planExpiresAt": now + float(plan.get("durationDays") or 0) * 86400.0,
    }
    user_ref.update(patch)
    notify_safely(
        user_id,
        "Plano ativado",
        f"Seu plano {plan.get('name')} está ativo.",
        NotificationType.PLAN_ASSIGNED,
    )
    return patch


def expire_plans(*, now: Optional[float] = None) -> int:
    """Clear plans whose expiry has passed. Returns how many users were affected."""
    now = _now() if now is None else float(now)
    expired = 0
    for snap in db.collection("users").where("planExpiresAt", "<=", now).stream():
        data = snap.to_dict() or {}
        if not data.get("activePlanId"):
            continue
        db.collection("users").document(snap.id).update({
            "activePlanId": None,
            "activePlanName": None,
            "planExpiresAt": None,
        })
        name = data.get("activePlanName")
        label = f"Seu plano {name}" if name else "Seu plano"
        notify_safely(snap.id, "Plano expirado", f"{label} expirou. Renove para continuar.", NotificationType.PLAN_EXPIRED)
        expired += 1
    if expired:
        logger.info("Expired %d plan(s)", expired)
    return expired


def expire_plans_job() -> None:
    try:
        expire_plans()
    except Exception as e:
        logger.error("Plan expiry job failed: %s", e)


@router.get("", response_model=List[Plan])
def get_plans(userType: Optional[str] = None):
    plans = list_items(PLANS)
    if userType:
        plans = [p for p in plans if p.get("userType") == userType]
    return [_with_features(p) for p in plans]


@router.post("", response_model=Plan, status_code=201)
def create_plan(payload: PlanIn, admin: Dict[str, Any] = Depends(require_admin)):
    created = add_item(PLANS, payload.model_dump(mode="json", exclude_none=True))
    log_action(admin.get("uid"), "PLAN_CREATED", created["id"])
    return _with_features(created)


@router.patch("/{plan_id}", response_model=Plan)
def edit_plan(plan_id: str, payload: PlanUpdate, admin: Dict[str, Any] = Depends(require_admin)):
    try:
        updated = update_item(PLANS, plan_id, payload.model_dump(mode="json", exclude_none=True))
    except LookupError:
        raise HTTPException(status_code=404, detail="Plano não encontrado.")
    log_action(admin.get("uid"), "PLAN_UPDATED", plan_id)
    return _with_features(updated)


@router.delete("/{plan_id}", status_code=204)
def remove_plan(plan_id: str, admin: Dict[str, Any] = Depends(require_admin)):
    try:
        delete_item(PLANS, plan_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Plano não encontrado.")
    log_action(admin.get("uid"), "PLAN_DELETED", plan_id)


@router.post("/assign/{user_id}")
def assign_plan_to_user(user_id: str, payload: AssignPlanRequest, admin: Dict[str, Any] = Depends(require_admin)):
    try:
        patch = assign_plan(user_id, payload.planId)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    log_action(admin.get("uid"), "PLAN_ASSIGNED", f"{payload.planId} -> {user_id}")
    return {"userId": user_id, **patch}
