"""
PagSeguro billing: plan charges (PIX, credit card, boleto), the notification
webhook and the subscription that a confirmed payment opens.

Charges carry the reference "userId:planId:transactionId" so the webhook can
find the matching `payment_transactions` document.
"""
from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from firebase_admin import firestore

from .auth import get_current_user
from .database import db, log_action
from .models import CardChargeCreate, ChargeCreate, NotificationType, PaymentCustomer
from .notifications import notify_safely
from .plans import assign_plan, get_plan
from .settings import settings
from .utils import only_digits, snapshot_to_dict, to_isoformat, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["Payments"])
billing_router = APIRouter(prefix="/payments", tags=["Payments"])

PAYMENTS = "payments"
TRANSACTIONS = "payment_transactions"
SUBSCRIPTIONS = "subscriptions"

# PagSeguro transaction status code -> internal payment status.
STATUS_MAP = {
    "1": "pending",
    "2": "pending",
    "3": "paid",
    "4": "paid",
    "5": "failed",
    "6": "refunded",
    "7": "cancelled",
}
PAID_STATUSES = {code for code, status in STATUS_MAP.items() if status == "paid"}

_STATUS_MESSAGES = {
    "paid": ("Pagamento confirmado", "O pagamento do plano {plan} foi confirmado."),
    "failed": ("Pagamento em disputa", "O pagamento do plano {plan} está em disputa."),
    "refunded": ("Pagamento devolvido", "O pagamento do plano {plan} foi devolvido."),
    "cancelled": ("Pagamento cancelado", "O pagamento do plano {plan} foi cancelado."),
}

_METHODS = {"PIX": "pix", "CREDITCARD": "creditcard", "BOLETO": "boleto"}

# How long an unpaid charge stays valid.
_CHARGE_TTL = {"PIX": timedelta(hours=24), "BOLETO": timedelta(days=3)}


class PagSeguroError(RuntimeError):
    pass


def _api_host() -> str:
    return "ws.sandbox.pagseguro.uol.com.br" if settings.PAGSEGURO_SANDBOX else "ws.pagseguro.uol.com.br"


def _notifications_url(code: str) -> str:
    return f"https://{_api_host()}/v3/transactions/notifications/{code}"


def _checkout_url() -> str:
    return f"https://{_api_host()}/v2/checkout"


def _payment_page_url(code: str) -> str:
    host = "sandbox.pagseguro.uol.com.br" if settings.PAGSEGURO_SANDBOX else "pagseguro.uol.com.br"
    return f"https://{host}/v2/checkout/payment.html?code={code}"


def _credentials() -> Dict[str, str]:
    if not settings.PAGSEGURO_EMAIL or not settings.PAGSEGURO_TOKEN:
        raise PagSeguroError("PAGSEGURO_EMAIL/PAGSEGURO_TOKEN are not set")
    return {"email": settings.PAGSEGURO_EMAIL, "token": settings.PAGSEGURO_TOKEN}


def parse_transaction(xml_payload: bytes | str) -> Dict[str, Optional[str]]:
    root = ET.fromstring(xml_payload)
    if root.tag != "transaction":
        raise ValueError(f"unexpected PagSeguro payload: <{root.tag}>")

    def _text(path: str) -> Optional[str]:
        node = root.find(path)
        return node.text.strip() if node is not None and node.text else None

    return {
        "code": _text("code"),
        "reference": _text("reference"),
        "status": _text("status"),
        "grossAmount": _text("grossAmount"),
        "paymentMethodType": _text("paymentMethod/type"),
        "senderEmail": _text("sender/email"),
    }


def parse_checkout(xml_payload: bytes | str) -> str:
    """Return the checkout code, or raise with PagSeguro's own error messages."""
    root = ET.fromstring(xml_payload)
    if root.tag == "errors":
        messages = [(e.findtext("message") or e.findtext("code") or "").strip() for e in root.findall("error")]
        raise PagSeguroError("; ".join(m for m in messages if m) or "PagSeguro recusou a cobrança")
    code = (root.findtext("code") or "").strip()
    if root.tag != "checkout" or not code:
        raise PagSeguroError(f"unexpected PagSeguro payload: <{root.tag}>")
    return code


def fetch_transaction(code: str) -> Dict[str, Optional[str]]:
    resp = httpx.get(_notifications_url(code), params=_credentials(), timeout=20)
    resp.raise_for_status()
    return parse_transaction(resp.content)


def split_reference(reference: Optional[str]) -> Dict[str, Optional[str]]:
    parts = (reference or "").split(":")
    parts += [""] * (3 - len(parts))
    return {"userId": parts[0] or None, "planId": parts[1] or None, "transactionId": parts[2] or None}


# ============================================================================
# Charges
# ============================================================================

def _checkout_form(
    method: str,
    reference: str,
    plan: Dict[str, Any],
    amount: float,
    customer: PaymentCustomer,
) -> Dict[str, Any]:
    form: Dict[str, Any] = {
        **_credentials(),
        "paymentMode": "default",
        "paymentMethod": _METHODS[method],
        "receiverEmail": settings.PAGSEGURO_EMAIL,
        "currency": "BRL",
        "reference": reference,
        "notificationURL": f"{settings.PUBLIC_API_URL.rstrip('/')}/api/webhooks/pagseguro",
        "senderName": customer.name,
        "senderEmail": customer.email,
        "itemId1": plan["id"],
        "itemDescription1": f"Assinatura {plan.get('name')} - {plan.get('durationDays')} dias",
        "itemAmount1": f"{amount:.2f}",
        "itemQuantity1": "1",
    }
    if customer.cpf:
        form["senderCPF"] = only_digits(customer.cpf)
    if customer.cnpj:
        form["senderCNPJ"] = only_digits(customer.cnpj)
    if customer.phoneAreaCode and customer.phone:
        form["senderAreaCode"] = customer.phoneAreaCode
        form["senderPhone"] = customer.phone
    return form


def _post_checkout(form: Dict[str, Any]) -> str:
    resp = httpx.post(_checkout_url(), data=form, timeout=30)
    if resp.status_code >= 400 and not resp.content.lstrip().startswith(b"<"):
        resp.raise_for_status()
    return parse_checkout(resp.content)


def _create_charge(
    user_id: str,
    plan_id: str,
    method: str,
    customer: PaymentCustomer,
    *,
    extra_form: Optional[Dict[str, Any]] = None,
    extra_record: Optional[Dict[str, Any]] = None,
    installments: int = 1,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    plan = get_plan(plan_id)
    price = plan.get("priceCard") if method == "CREDITCARD" else plan.get("pricePix")
    amount = float(price or 0)
    ref = db.collection(TRANSACTIONS).document()
    reference = f"{user_id}:{plan_id}:{ref.id}"

    form = _checkout_form(method, reference, plan, amount, customer)
    form.update(extra_form or {})
    if method == "CREDITCARD":
        form["creditCardInstallmentQuantity"] = str(installments)
        form["creditCardInstallmentValue"] = f"{amount / installments:.2f}"
    code = _post_checkout(form)

    now = now or utcnow()
    record: Dict[str, Any] = {
        "userId": user_id,
        "planId": plan_id,
        "planName": plan.get("name"),
        "amount": amount,
        "paymentMethod": method,
        "status": "pending",
        "pagseguroCode": code,
        "pagseguroStatus": "1",
        "reference": reference,
        "paymentUrl": _payment_page_url(code),
        "createdAt": now,
        "updatedAt": now,
    }
    if method in _CHARGE_TTL:
        record["expiresAt"] = now + _CHARGE_TTL[method]
    record.update(extra_record or {})
    ref.set(record)

    notify_safely(
        user_id,
        "Pagamento criado",
        f"Cobrança de R$ {amount:.2f} ({method}) gerada para o plano {plan.get('name')}.",
        NotificationType.PAYMENT_CREATED,
    )
    logger.info("PagSeguro %s charge %s created for %s (plan %s)", method, code, user_id, plan_id)
    return {"id": ref.id, **record}


def create_pix_charge(user_id: str, plan_id: str, customer: PaymentCustomer, **kwargs) -> Dict[str, Any]:
    return _create_charge(user_id, plan_id, "PIX", customer, **kwargs)


def create_boleto_charge(user_id: str, plan_id: str, customer: PaymentCustomer, **kwargs) -> Dict[str, Any]:
    return _create_charge(user_id, plan_id, "BOLETO", customer, **kwargs)


def create_card_charge(user_id: str, payload: CardChargeCreate, **kwargs) -> Dict[str, Any]:
    card = payload.card
    extra_form = {
        "creditCardToken": card.token,
        "creditCardHolderName": card.holderName,
        "creditCardHolderCPF": only_digits(card.holderCpf),
        "creditCardHolderBirthDate": card.holderBirthDate,
    }
    if payload.customer.phoneAreaCode and payload.customer.phone:
        extra_form["creditCardHolderAreaCode"] = payload.customer.phoneAreaCode
        extra_form["creditCardHolderPhone"] = payload.customer.phone
    extra_record = {"installments": payload.installments, "cardLastDigits": card.lastDigits, "cardBrand": card.brand}
    return _create_charge(
        user_id,
        payload.planId,
        "CREDITCARD",
        payload.customer,
        extra_form=extra_form,
        extra_record=extra_record,
        installments=payload.installments,
        **kwargs,
    )


# ============================================================================
# Subscriptions
# ============================================================================

def activate_subscription(
    user_id: str,
    plan_id: str,
    transaction_id: Optional[str] = None,
    payment_method: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Assign the plan and open (or renew) the user's subscription."""
    assign_plan(user_id, plan_id)
    plan = get_plan(plan_id)
    now = now or utcnow()
    end = now + timedelta(days=float(plan.get("durationDays") or 0))
    subscription = {
        "userId": user_id,
        "planId": plan_id,
        "planName": plan.get("name"),
        "status": "active",
        "startDate": now,
        "endDate": end,
        "renewalDate": end - timedelta(days=1),
        "autoRenew": True,
        "paymentMethod": payment_method,
        "lastPaymentId": transaction_id,
        "updatedAt": now,
    }
    existing = list(db.collection(SUBSCRIPTIONS).where("userId", "==", user_id).limit(1).stream())
    if existing:
        ref = db.collection(SUBSCRIPTIONS).document(existing[0].id)
        ref.update(subscription)
    else:
        ref = db.collection(SUBSCRIPTIONS).document()
        ref.set({**subscription, "createdAt": now})
    return {"id": ref.id, **subscription}


def list_user_transactions(user_id: str) -> List[Dict[str, Any]]:
    items = [snapshot_to_dict(s) for s in db.collection(TRANSACTIONS).where("userId", "==", user_id).stream()]
    items.sort(key=lambda t: to_isoformat(t.get("createdAt")) or "", reverse=True)
    return items


def get_active_subscription(user_id: str) -> Optional[Dict[str, Any]]:
    """Most recent subscription of the user, or None."""
    subs = [snapshot_to_dict(s) for s in db.collection(SUBSCRIPTIONS).where("userId", "==", user_id).stream()]
    if not subs:
        return None
    return max(subs, key=lambda s: to_isoformat(s.get("createdAt")) or "")


def cancel_subscription(user_id: str, subscription_id: str) -> Dict[str, Any]:
    ref = db.collection(SUBSCRIPTIONS).document(subscription_id)
    snap = ref.get()
    if not snap.exists:
        raise LookupError("Assinatura não encontrada.")
    data = snap.to_dict() or {}
    if data.get("userId") != user_id:
        raise PermissionError("Usuário não autorizado.")
    patch = {"status": "cancelled", "autoRenew": False, "updatedAt": utcnow()}
    ref.update(patch)
    notify_safely(
        user_id,
        "Assinatura cancelada",
        f"Sua assinatura do plano {data.get('planName')} foi cancelada.",
        NotificationType.SUBSCRIPTION_CANCELLED,
    )
    data.update(patch)
    data["id"] = subscription_id
    return data


# ============================================================================
# Webhook
# ============================================================================

def _find_transaction(transaction_id: Optional[str], pagseguro_code: Optional[str]):
    if transaction_id:
        snap = db.collection(TRANSACTIONS).document(transaction_id).get()
        if snap.exists:
            return snap
    if pagseguro_code:
        for snap in db.collection(TRANSACTIONS).where("pagseguroCode", "==", pagseguro_code).limit(1).stream():
            return snap
    return None


def process_pagseguro_notification(code: str) -> Dict[str, Any]:
    """Record the transaction behind a notification code, update its charge and activate the plan once paid."""
    transaction = fetch_transaction(code)
    ids = split_reference(transaction.get("reference"))
    status = STATUS_MAP.get(transaction.get("status") or "")

    record = dict(transaction)
    record.update({
        "notificationCode": code,
        "userId": ids["userId"],
        "planId": ids["planId"],
        "paymentStatus": status,
        "receivedAt": utcnow(),
        "updatedAt": firestore.SERVER_TIMESTAMP,
    })
    doc_id = transaction.get("code") or code
    db.collection(PAYMENTS).document(doc_id).set(record, merge=True)

    user_id, plan_id = ids["userId"], ids["planId"]
    stored = _find_transaction(ids["transactionId"], transaction.get("code"))
    charge = stored.to_dict() if stored is not None else {}
    if stored is not None:
        user_id = charge.get("userId") or user_id
        plan_id = charge.get("planId") or plan_id
        patch: Dict[str, Any] = {"pagseguroStatus": transaction.get("status"), "updatedAt": utcnow()}
        if status and status != "pending":
            patch["status"] = status
            if status == "paid":
                patch["paidAt"] = utcnow()
        db.collection(TRANSACTIONS).document(stored.id).update(patch)
    else:
        logger.warning("No payment transaction matches PagSeguro transaction %s", doc_id)

    if transaction.get("status") in PAID_STATUSES and user_id and plan_id:
        activate_subscription(
            user_id,
            plan_id,
            stored.id if stored is not None else doc_id,
            charge.get("paymentMethod"),
        )
        logger.info("Plan %s activated for %s by PagSeguro transaction %s", plan_id, user_id, doc_id)

    if status in _STATUS_MESSAGES and user_id:
        title, message = _STATUS_MESSAGES[status]
        plan_name = charge.get("planName") or plan_id
        notify_safely(user_id, title, message.format(plan=plan_name), NotificationType.PAYMENT_STATUS_UPDATED)
    return record


# ============================================================================
# Routes
# ============================================================================

@router.post("/pagseguro")
def pagseguro_webhook(notificationCode: Optional[str] = None):
    if not notificationCode:
        return JSONResponse(status_code=400, content={"error": "notificationCode não fornecido"})
    logger.info("PagSeguro notification received: %s", notificationCode)
    try:
        process_pagseguro_notification(notificationCode)
    except Exception as e:
        logger.error("PagSeguro notification %s failed: %s", notificationCode, e)
        return JSONResponse(status_code=500, content={"error": "Erro interno do servidor", "message": str(e)})
    return JSONResponse(status_code=200, content={"success": True})


@router.get("/pagseguro")
def pagseguro_webhook_status():
    return {"message": "Webhook PagSeguro funcionando", "timestamp": utcnow().isoformat()}


def _serialize(data: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(data)
    for key in ("createdAt", "updatedAt", "paidAt", "expiresAt", "startDate", "endDate", "renewalDate"):
        if key in out:
            out[key] = to_isoformat(out[key])
    return out


def _charge(fn, user: Dict[str, Any], *args):
    try:
        created = fn(user["uid"], *args)
    except LookupError:
        raise HTTPException(status_code=404, detail="Plano não encontrado.")
    except (PagSeguroError, httpx.HTTPError) as e:
        logger.error("PagSeguro charge for %s failed: %s", user["uid"], e)
        raise HTTPException(status_code=502, detail=f"Erro ao criar pagamento: {e}")
    log_action(user["uid"], "PAYMENT_CREATED", f"{created['paymentMethod']} {created['id']}")
    return _serialize(created)


@billing_router.post("/pix", status_code=201)
def create_pix_payment(payload: ChargeCreate, user: Dict[str, Any] = Depends(get_current_user)):
    return _charge(create_pix_charge, user, payload.planId, payload.customer)


@billing_router.post("/boleto", status_code=201)
def create_boleto_payment(payload: ChargeCreate, user: Dict[str, Any] = Depends(get_current_user)):
    return _charge(create_boleto_charge, user, payload.planId, payload.customer)


@billing_router.post("/credit-card", status_code=201)
def create_credit_card_payment(payload: CardChargeCreate, user: Dict[str, Any] = Depends(get_current_user)):
    return _charge(create_card_charge, user, payload)


@billing_router.get("/transactions")
def my_transactions(user: Dict[str, Any] = Depends(get_current_user)):
    items = [_serialize(t) for t in list_user_transactions(user["uid"])]
    return {"transactions": items, "total": len(items)}


@billing_router.get("/subscription")
def my_subscription(user: Dict[str, Any] = Depends(get_current_user)):
    subscription = get_active_subscription(user["uid"])
    return {"subscription": _serialize(subscription) if subscription else None}


@billing_router.post("/subscription/{subscription_id}/cancel")
def cancel_my_subscription(subscription_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    try:
        cancelled = cancel_subscription(user["uid"], subscription_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    log_action(user["uid"], "SUBSCRIPTION_CANCELLED", subscription_id)
    return _serialize(cancelled)
