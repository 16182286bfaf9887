"""
Back-office endpoints: user moderation, document review, system notifications and dashboard metrics.

All routes require an admin session.
"""
from __future__ import annotations

import logging
from datetime import datetime, time as dtime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from .auth import _format_cnpj, profile_view, require_admin
from .collaborators import list_collaborators
from .database import db, log_action
from .freights import FREIGHTS
from .models import (
    AdminUserUpdate,
    BulkApproveRequest,
    DashboardMetrics,
    DocumentStatus,
    DocumentStatusUpdate,
    FreightStatus,
    NotificationType,
    Role,
    SystemNotificationCreate,
    UserStatus,
    UserStatusUpdate,
)
from .notifications import broadcast_notification, delete_old_notifications, notify_safely
from .utils import only_digits, to_isoformat, utcnow, validate_cpf

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

_STATUS_NOTIFICATIONS = {
    UserStatus.ACTIVE: (
        NotificationType.USER_ACTIVATED,
        "Conta ativada",
        "Sua conta foi aprovada e está ativa.",
    ),
    UserStatus.BLOCKED: (
        NotificationType.USER_BLOCKED,
        "Conta bloqueada",
        "Sua conta foi bloqueada. Entre em contato com o suporte.",
    ),
    UserStatus.SUSPENDED: (
        NotificationType.USER_SUSPENDED,
        "Conta suspensa",
        "Sua conta foi suspensa temporariamente.",
    ),
}

_DOC_LABELS = {
    "cnpjCard": "Cartão CNPJ",
    "responsible.document": "Documento do responsável",
}


def _user_ref(uid: str):
    return db.collection("users").document(uid)


def _load_user(uid: str) -> Dict[str, Any]:
    snap = _user_ref(uid).get()
    if not snap.exists:
        raise HTTPException(status_code=404, detail="Usuário não encontrado.")
    data = snap.to_dict() or {}
    data["uid"] = snap.id
    return data


def _summary(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "uid": data.get("uid"),
        "email": data.get("email"),
        "name": data.get("tradingName") or data.get("name"),
        "role": data.get("role"),
        "status": data.get("status"),
        "activePlanName": data.get("activePlanName"),
        "createdAt": to_isoformat(data.get("createdAt")),
    }


def list_users(role: Optional[str] = None, status: Optional[str] = None) -> Dict[str, Any]:
    users: List[Dict[str, Any]] = []
    for snap in db.collection("users").stream():
        data = snap.to_dict() or {}
        data["uid"] = snap.id
        users.append(data)

    counts = {
        "drivers": sum(1 for u in users if u.get("role") == Role.DRIVER.value),
        "companies": sum(1 for u in users if u.get("role") == Role.COMPANY.value),
        "pending": sum(1 for u in users if u.get("status") == UserStatus.PENDING.value),
    }
    if role:
        users = [u for u in users if u.get("role") == role]
    if status:
        users = [u for u in users if u.get("status") == status]
    items = [_summary(u) for u in users]
    items.sort(key=lambda u: u.get("createdAt") or "", reverse=True)
    return {"users": items, "total": len(items), "counts": counts}


def _normalize_document(value: Any) -> Optional[Dict[str, Any]]:
    # Older profiles stored the bare download URL.
    if isinstance(value, str):
        return {"url": value, "status": DocumentStatus.PENDING.value}
    if isinstance(value, dict):
        return dict(value)
    return None


_DOCUMENTS_BLOCKED = "Usuário não pode ser ativado. Documentos pendentes ou rejeitados."


def _doc_status(value: Any) -> Optional[str]:
    document = _normalize_document(value)
    return document.get("status") if document else None


def can_activate(user: Dict[str, Any]) -> bool:
    """Companies need both documents approved; drivers need CNH, category, name and e-mail."""
    role = user.get("role")
    if role == Role.COMPANY.value:
        responsible = user.get("responsible") or {}
        return (
            _doc_status(responsible.get("document")) == DocumentStatus.APPROVED.value
            and _doc_status(user.get("cnpjCard")) == DocumentStatus.APPROVED.value
        )
    if role == Role.DRIVER.value:
        return all(user.get(key) for key in ("cnh", "cnhCategory", "name", "email"))
    return False


def document_report(user: Dict[str, Any]) -> Dict[str, Any]:
    issues: List[str] = []
    missing: List[str] = []

    def _flag(issue: str, document: str) -> None:
        issues.append(issue)
        missing.append(document)

    role = user.get("role")
    if role == Role.COMPANY.value:
        responsible = user.get("responsible") or {}
        if len(only_digits(user.get("cnpj"))) != 14:
            _flag("CNPJ inválido ou não informado", "CNPJ válido")
        if not validate_cpf(responsible.get("cpf") or ""):
            _flag("CPF do responsável inválido ou não informado", "CPF do responsável")
        if not (_normalize_document(responsible.get("document")) or {}).get("url"):
            _flag("Documento do responsável não enviado", "Documento do responsável")
        if not (_normalize_document(user.get("cnpjCard")) or {}).get("url"):
            _flag("Cartão CNPJ não enviado", "Cartão CNPJ")
    elif role == Role.DRIVER.value:
        if not user.get("cnh"):
            _flag("CNH não informada", "CNH")
        if not user.get("cnhCategory"):
            _flag("Categoria da CNH não informada", "Categoria da CNH")

    return {
        "uid": user.get("uid"),
        "isValid": not issues,
        "issues": issues,
        "missingDocuments": missing,
        "canActivate": can_activate(user),
    }


def _notify_status(uid: str, status: UserStatus) -> None:
    if status in _STATUS_NOTIFICATIONS:
        kind, title, message = _STATUS_NOTIFICATIONS[status]
        notify_safely(uid, title, message, kind)


def set_user_status(uid: str, status: UserStatus) -> None:
    user = _load_user(uid)
    if status == UserStatus.ACTIVE and not can_activate(user):
        raise ValueError(_DOCUMENTS_BLOCKED)
    _user_ref(uid).update({"status": status.value})
    _notify_status(uid, status)


def bulk_approve(uids: List[str]) -> Dict[str, Any]:
    result: Dict[str, Any] = {"success": 0, "failed": 0, "details": []}
    for uid in dict.fromkeys(uids):
        snap = _user_ref(uid).get()
        if not snap.exists:
            result["failed"] += 1
            result["details"].append(f"Usuário {uid} não encontrado")
            continue
        user = snap.to_dict() or {}
        if not can_activate(user):
            result["failed"] += 1
            result["details"].append(f"Usuário {uid} não pode ser ativado - documentos pendentes")
            continue
        _user_ref(uid).update({"status": UserStatus.ACTIVE.value})
        _notify_status(uid, UserStatus.ACTIVE)
        result["success"] += 1
        result["details"].append(f"Usuário {uid} ativado com sucesso")
    return result


def set_document_status(uid: str, doc_field: str, status: DocumentStatus) -> Dict[str, Any]:
    """Review one uploaded company document and notify the owner."""
    user = _load_user(uid)
    if doc_field == "responsible.document":
        responsible = dict(user.get("responsible") or {})
        document = _normalize_document(responsible.get("document"))
        if document is None:
            raise LookupError("Documento não enviado.")
        document["status"] = status.value
        responsible["document"] = document
        _user_ref(uid).update({"responsible": responsible})
    else:
        document = _normalize_document(user.get(doc_field))
        if document is None:
            raise LookupError("Documento não enviado.")
        document["status"] = status.value
        _user_ref(uid).update({doc_field: document})

    label = _DOC_LABELS.get(doc_field, doc_field)
    if status == DocumentStatus.APPROVED:
        notify_safely(uid, "Documento aprovado", f"{label} foi aprovado.", NotificationType.DOCUMENT_APPROVED)
    elif status == DocumentStatus.REJECTED:
        notify_safely(
            uid,
            "Documento rejeitado",
            f"{label} foi rejeitado. Envie um novo arquivo.",
            NotificationType.DOCUMENT_REJECTED,
        )
    return document


def update_user_data(uid: str, update: AdminUserUpdate) -> Dict[str, Any]:
    user = _load_user(uid)
    data = update.model_dump(exclude_none=True)
    patch: Dict[str, Any] = {}
    for key in ("name", "tradingName", "address"):
        if key in data:
            patch[key] = data[key]
    if data.get("cnpj"):
        patch["cnpj"] = _format_cnpj(data["cnpj"])

    if "responsibleName" in data or "responsibleCpf" in data:
        responsible = dict(user.get("responsible") or {})
        if "responsibleName" in data:
            responsible["name"] = data["responsibleName"]
        if data.get("responsibleCpf"):
            if not validate_cpf(data["responsibleCpf"]):
                raise HTTPException(status_code=400, detail="CPF do responsável inválido.")
            responsible["cpf"] = only_digits(data["responsibleCpf"])
        patch["responsible"] = responsible

    if patch:
        _user_ref(uid).update(patch)
    user.update(patch)
    return user


def _start_of_today() -> datetime:
    return datetime.combine(utcnow().date(), dtime.min, tzinfo=timezone.utc)


def dashboard_metrics() -> DashboardMetrics:
    users = db.collection("users")
    freights = db.collection(FREIGHTS)

    def _count(query) -> int:
        return sum(1 for _ in query.stream())

    return DashboardMetrics(
        totalUsers=_count(users),
        newUsersToday=_count(users.where("createdAt", ">=", _start_of_today())),
        pendingVerifications=_count(users.where("status", "==", UserStatus.PENDING.value)),
        activeFreights=_count(freights.where("status", "==", FreightStatus.ATIVO.value)),
        pendingFreights=_count(freights.where("status", "==", FreightStatus.PENDENTE.value)),
        completedFreights=_count(freights.where("status", "==", FreightStatus.CONCLUIDO.value)),
    )


# ============================================================================
# Routes
# ============================================================================

@router.get("/users")
def get_users(role: Optional[str] = None, status: Optional[str] = None, admin: Dict[str, Any] = Depends(require_admin)):
    return list_users(role=role, status=status)


@router.get("/users/{uid}")
def get_user_detail(uid: str, admin: Dict[str, Any] = Depends(require_admin)):
    user = _load_user(uid)
    collaborators = list_collaborators(uid) if user.get("role") == Role.COMPANY.value else []
    return {"profile": profile_view(user), "collaborators": collaborators}


@router.post("/users/bulk-approve")
def approve_users(payload: BulkApproveRequest, admin: Dict[str, Any] = Depends(require_admin)):
    result = bulk_approve(payload.uids)
    log_action(admin["uid"], "BULK_USER_APPROVAL", f"{result['success']} ok, {result['failed']} failed")
    return result


@router.get("/users/{uid}/document-check")
def check_user_documents(uid: str, admin: Dict[str, Any] = Depends(require_admin)):
    return document_report(_load_user(uid))


@router.patch("/users/{uid}/status")
def change_user_status(uid: str, payload: UserStatusUpdate, admin: Dict[str, Any] = Depends(require_admin)):
    status = UserStatus(payload.status)
    try:
        set_user_status(uid, status)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    log_action(admin["uid"], "USER_STATUS", f"{uid} -> {status.value}")
    return {"uid": uid, "status": status.value}


@router.patch("/users/{uid}/documents")
def change_document_status(uid: str, payload: DocumentStatusUpdate, admin: Dict[str, Any] = Depends(require_admin)):
    try:
        document = set_document_status(uid, payload.docField, payload.status)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    log_action(admin["uid"], "DOCUMENT_STATUS", f"{uid} {payload.docField} -> {payload.status.value}")
    return {"uid": uid, "docField": payload.docField, "document": document}


@router.patch("/users/{uid}")
def edit_user(uid: str, payload: AdminUserUpdate, admin: Dict[str, Any] = Depends(require_admin)):
    user = update_user_data(uid, payload)
    log_action(admin["uid"], "USER_EDITED", uid)
    return profile_view(user)


@router.get("/metrics", response_model=DashboardMetrics)
def get_metrics(admin: Dict[str, Any] = Depends(require_admin)):
    return dashboard_metrics()


@router.post("/notifications/broadcast")
def send_system_notification(payload: SystemNotificationCreate, admin: Dict[str, Any] = Depends(require_admin)):
    result = broadcast_notification(payload.title, payload.message, payload.target, payload.userIds)
    log_action(admin["uid"], "SYSTEM_NOTIFICATION", f"{payload.target}: {result['sent']} sent")
    return result


@router.delete("/notifications/old")
def purge_old_notifications(
    days: int = Query(30, ge=1),
    userId: Optional[str] = None,
    admin: Dict[str, Any] = Depends(require_admin),
):
    deleted = delete_old_notifications(days, userId)
    log_action(admin["uid"], "NOTIFICATIONS_PURGED", f"{deleted} older than {days} day(s)")
    return {"deleted": deleted}
