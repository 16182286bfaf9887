# File: apps/rotafrete/auth.py
from fastapi import APIRouter, HTTPException, Header, Depends, status, UploadFile, File
from firebase_admin import auth as firebase_auth
from firebase_admin import firestore
import firebase_admin
import asyncio
import logging
import time
import uuid
from typing import Optional, Dict, Any

import httpx

# Use relative imports
from .database import db, bucket, log_action
from .models import (
    CompanySignup, DriverSignup, SignupResponse, LoginRequest, LoginResponse,
    ProfileUpdate, Role, UserProfile, UserStatus, DocumentStatus,
)
from .settings import settings
from .utils import only_digits, validate_cpf, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


async def _to_thread(fn, timeout_s: float = 25.0):
    """Run blocking SDK calls off the event loop with a soft timeout."""
    return await asyncio.wait_for(asyncio.to_thread(fn), timeout=timeout_s)


# ============================================================================
# Role / status helpers
# ============================================================================

_LANDING_PATHS = {
    Role.ADMIN.value: "/admin",
    Role.COMPANY.value: "/company-dashboard",
    Role.DRIVER.value: "/driver-dashboard",
}


def landing_path(role: Optional[str]) -> str:
    """Dashboard a session lands on after login; unknown roles go to /profile."""
    return _LANDING_PATHS.get(str(role or "").strip().lower(), "/profile")


def needs_profile_completion(profile: Optional[Dict[str, Any]]) -> bool:
    if not profile:
        return False
    role = profile.get("role")
    if role == Role.COMPANY.value:
        responsible = profile.get("responsible") or {}
        return not profile.get("tradingName") or not profile.get("cnpj") or not responsible.get("name")
    if role == Role.DRIVER.value:
        return not profile.get("name") or not profile.get("cnh") or not profile.get("cnhCategory")
    return False


def is_blocked(profile: Optional[Dict[str, Any]]) -> bool:
    return (profile or {}).get("status") in {UserStatus.BLOCKED.value, UserStatus.SUSPENDED.value}


def profile_view(profile: Dict[str, Any]) -> UserProfile:
    return UserProfile(
        uid=profile.get("uid", ""),
        email=profile.get("email"),
        name=profile.get("name"),
        role=profile.get("role"),
        status=profile.get("status"),
        tradingName=profile.get("tradingName"),
        cnpj=profile.get("cnpj"),
        responsible=profile.get("responsible"),
        cnpjCard=profile.get("cnpjCard"),
        cnh=profile.get("cnh"),
        cnhCategory=profile.get("cnhCategory"),
        activePlanId=profile.get("activePlanId"),
        activePlanName=profile.get("activePlanName"),
        planExpiresAt=profile.get("planExpiresAt"),
        needsProfileCompletion=needs_profile_completion(profile),
        isPendingApproval=profile.get("status") == UserStatus.PENDING.value,
        isBlocked=is_blocked(profile),
    )


def _format_cnpj(value: str) -> str:
    d = only_digits(value)
    if len(d) != 14:
        raise HTTPException(status_code=400, detail="CNPJ deve ter 14 números.")
    return f"{d[:2]}.{d[2:5]}.{d[5:8]}/{d[8:12]}-{d[12:]}"


def _format_cep(value: str) -> str:
    d = only_digits(value)
    if len(d) != 8:
        raise HTTPException(status_code=400, detail="CEP deve ter 8 números.")
    return f"{d[:5]}-{d[5:]}"


def _address_details(data) -> Dict[str, Any]:
    return {
        "cep": _format_cep(data.cep),
        "logradouro": data.logradouro,
        "numero": data.numero,
        "complemento": data.complemento,
        "bairro": data.bairro,
        "cidade": data.cidade,
        "uf": data.uf.upper(),
    }


def _address_line(details: Dict[str, Any]) -> str:
    return f"{details['logradouro']}, {details['numero']}, {details['bairro']}, {details['cidade']} - {details['uf']}"


def _age_on(birth, today) -> int:
    return today.year - birth.year - ((today.month, today.day) < (birth.month, birth.day))


# ============================================================================
# Current User Dependency
# ============================================================================

async def get_current_user(authorization: str = Header(...)) -> Dict[str, Any]:
    """
    Verifies the Firebase ID token and returns the mirrored Firestore profile.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    token = authorization.split(" ")[1]

    try:
        decoded_token = await _to_thread(lambda: firebase_auth.verify_id_token(token))
        uid = decoded_token.get("uid")
        if not uid:
            raise HTTPException(status_code=401, detail="Invalid token structure")

        user_doc = await _to_thread(db.collection("users").document(uid).get)
        if not user_doc.exists:
            # Authenticated but no profile yet: role-less session.
            return {"uid": uid, "email": decoded_token.get("email"), "role": None, "status": None}

        user_data = user_doc.to_dict() or {}
        user_data["uid"] = uid
        return user_data

    except asyncio.TimeoutError:
        raise HTTPException(status_code=503, detail="Auth service timeout")
    except HTTPException:
        raise
    except Exception as e:
        logger.warning("Auth error: %s", e)
        raise HTTPException(status_code=401, detail="Invalid or expired token")


# ============================================================================
# RBAC utilities (defined after get_current_user)
# ============================================================================

def require_role(*allowed_roles: Role):
    """Dependency factory requiring one of the given roles."""
    async def role_check(user: Dict[str, Any] = Depends(get_current_user)):
        if user.get("role") not in {r.value for r in allowed_roles}:
            raise HTTPException(
                status_code=403,
                detail=f"Access denied. Required roles: {[r.value for r in allowed_roles]}"
            )
        return user
    return role_check


def require_admin(user: Dict[str, Any] = Depends(get_current_user)):
    """Require admin role."""
    if user.get("role") != Role.ADMIN.value:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def require_active(user: Dict[str, Any] = Depends(get_current_user)):
    """Reject blocked or suspended accounts."""
    if is_blocked(user):
        raise HTTPException(status_code=403, detail="Conta bloqueada ou suspensa.")
    return user


# ============================================================================
# Registration & login
# ============================================================================

def _create_auth_user(email: str, password: str, display_name: str):
    try:
        return firebase_auth.create_user(email=email, password=password, display_name=display_name)
    except firebase_auth.EmailAlreadyExistsError:
        raise HTTPException(status_code=400, detail="Este e-mail já está em uso.")
    except firebase_admin.exceptions.FirebaseError as e:
        raise HTTPException(status_code=500, detail=f"Falha no cadastro: {e}")


@router.post("/register/company", response_model=SignupResponse, status_code=status.HTTP_201_CREATED)
def register_company(data: CompanySignup):
    """Creates the Firebase Auth user and the company profile document."""
    if data.password != data.confirmPassword:
        raise HTTPException(status_code=400, detail="As senhas não coincidem.")
    cnpj = _format_cnpj(data.cnpj)
    details = _address_details(data)

    user_record = _create_auth_user(data.email, data.password, data.razaoSocial)

    db.collection("users").document(user_record.uid).set({
        "uid": user_record.uid,
        "name": data.razaoSocial,
        "tradingName": data.nomeFantasia,
        "cnpj": cnpj,
        "address": _address_line(details),
        "addressDetails": details,
        "email": data.email,
        "role": Role.COMPANY.value,
        "status": UserStatus.INCOMPLETE.value,
        "createdAt": firestore.SERVER_TIMESTAMP,
        # Full structure up-front so later partial updates never hit missing keys.
        "responsible": {"name": "", "cpf": "", "document": None},
        "cnpjCard": None,
    })
    log_action(user_record.uid, "SIGNUP", "Company registered")

    return SignupResponse(
        uid=user_record.uid,
        email=data.email,
        role=Role.COMPANY,
        status=UserStatus.INCOMPLETE,
        redirect_to="/profile",
        message="Cadastro recebido com sucesso! Complete seu perfil.",
    )


@router.post("/register/driver", response_model=SignupResponse, status_code=status.HTTP_201_CREATED)
def register_driver(data: DriverSignup):
    """Creates the Firebase Auth user and the driver profile document."""
    if data.password != data.confirmPassword:
        raise HTTPException(status_code=400, detail="As senhas não coincidem.")
    if only_digits(data.phone) != only_digits(data.confirmPhone):
        raise HTTPException(status_code=400, detail="Os telefones não coincidem.")
    if not validate_cpf(data.cpf):
        raise HTTPException(status_code=400, detail="CPF inválido.")
    if _age_on(data.birthDate, utcnow().date()) < 18:
        raise HTTPException(status_code=400, detail="Você deve ter pelo menos 18 anos.")
    cnpj = None
    if data.hasCnpj:
        if not data.cnpj:
            raise HTTPException(status_code=400, detail="CNPJ é obrigatório e deve ser válido.")
        cnpj = _format_cnpj(data.cnpj)
    details = _address_details(data)

    user_record = _create_auth_user(data.email, data.password, data.fullName)

    db.collection("users").document(user_record.uid).set({
        "uid": user_record.uid,
        "name": data.fullName,
        "email": data.email,
        "cpf": only_digits(data.cpf),
        "phone": data.phone,
        "birthDate": data.birthDate.isoformat(),
        "address": _address_line(details),
        "addressDetails": details,
        "hasCnpj": data.hasCnpj,
        "cnpj": cnpj,
        "issuesInvoice": data.issuesInvoice,
        "issuesCte": data.issuesCte,
        "hasAntt": data.hasAntt,
        "cnh": data.cnhNumber,
        "cnhCategory": data.cnhCategory,
        "cnhExpiration": data.cnhExpiration.isoformat(),
        "role": Role.DRIVER.value,
        # Becomes pending once CNH and selfie are uploaded.
        "status": UserStatus.INCOMPLETE.value,
        "vehicles": [],
        "createdAt": firestore.SERVER_TIMESTAMP,
    })
    log_action(user_record.uid, "SIGNUP", "Driver registered")

    return SignupResponse(
        uid=user_record.uid,
        email=data.email,
        role=Role.DRIVER,
        status=UserStatus.INCOMPLETE,
        redirect_to="/profile",
        message="Cadastro recebido! Envie sua CNH e selfie para análise.",
    )


async def _firebase_verify_password(email: str, password: str) -> Dict[str, Any]:
    """Verifies email/password using Firebase Identity Toolkit."""
    api_key = settings.FIREBASE_WEB_API_KEY
    if not api_key:
        raise HTTPException(status_code=500, detail="FIREBASE_WEB_API_KEY is not configured")

    url = f"https://identitytoolkit.googleapis.com/v1/accounts:signInWithPassword?key={api_key}"
    payload = {"email": email, "password": password, "returnSecureToken": True}
    async with httpx.AsyncClient(timeout=15) as client:
        resp = await client.post(url, json=payload)
    if resp.status_code != 200:
        try:
            msg = resp.json().get("error", {}).get("message", "INVALID_LOGIN")
        except Exception:
            msg = "INVALID_LOGIN"
        logger.info("Password login rejected for %s: %s", email, msg)
        raise HTTPException(status_code=401, detail="E-mail ou senha inválidos.")

    return resp.json()


@router.post("/login", response_model=LoginResponse)
async def login(request: LoginRequest):
    """
    Authenticate with email and password.
    Returns a custom token and the dashboard the client should open.
    """
    auth_res = await _firebase_verify_password(request.email.strip(), request.password)
    uid = auth_res.get("localId")
    if not uid:
        raise HTTPException(status_code=401, detail="E-mail ou senha inválidos.")

    user_doc = await _to_thread(db.collection("users").document(uid).get)
    user_data = user_doc.to_dict() if user_doc.exists else {}
    role = (user_data or {}).get("role")

    token = firebase_auth.create_custom_token(uid)
    token_str = token.decode("utf-8") if isinstance(token, (bytes, bytearray)) else str(token)
    log_action(uid, "LOGIN", "User logged in")

    return LoginResponse(custom_token=token_str, uid=uid, role=role, redirect_to=landing_path(role))


# ============================================================================
# Profile
# ============================================================================

@router.get("/me", response_model=UserProfile)
async def get_current_user_profile(user: Dict[str, Any] = Depends(get_current_user)):
    """Current profile with derived completion/approval/blocked flags."""
    return profile_view(user)


@router.get("/redirect")
async def get_landing_path(user: Dict[str, Any] = Depends(get_current_user)):
    return {"role": user.get("role"), "redirect_to": landing_path(user.get("role"))}


@router.patch("/profile", response_model=UserProfile)
def update_profile(update: ProfileUpdate, user: Dict[str, Any] = Depends(require_active)):
    """Self-service profile update."""
    uid = user["uid"]
    changes = update.model_dump(exclude_none=True)
    if not changes:
        return profile_view(user)

    responsible_name = changes.pop("responsibleName", None)
    responsible_cpf = changes.pop("responsibleCpf", None)
    if responsible_name is not None or responsible_cpf is not None:
        if user.get("role") != Role.COMPANY.value:
            raise HTTPException(status_code=400, detail="Apenas empresas possuem responsável.")
        responsible = dict(user.get("responsible") or {})
        if responsible_name is not None:
            responsible["name"] = responsible_name
        if responsible_cpf is not None:
            if not validate_cpf(responsible_cpf):
                raise HTTPException(status_code=400, detail="CPF do responsável inválido.")
            responsible["cpf"] = only_digits(responsible_cpf)
        changes["responsible"] = responsible

    changes["updatedAt"] = time.time()
    db.collection("users").document(uid).set(changes, merge=True)
    log_action(uid, "PROFILE_UPDATE", f"Updated fields: {sorted(changes.keys())}")

    updated = dict(user)
    updated.update(changes)
    return profile_view(updated)


# Upload kinds -> (allowed roles, field written on the user document)
_DOCUMENT_KINDS = {
    "cnh": (Role.DRIVER.value, "cnhFile"),
    "selfie": (Role.DRIVER.value, "selfie"),
    "cnpjCard": (Role.COMPANY.value, "cnpjCard"),
    "responsibleDocument": (Role.COMPANY.value, "responsible.document"),
}
_ALLOWED_EXTENSIONS = {"jpg": "image/jpeg", "jpeg": "image/jpeg", "png": "image/png", "webp": "image/webp", "pdf": "application/pdf"}
_MAX_UPLOAD_BYTES = 5 * 1024 * 1024


def _documents_complete(profile: Dict[str, Any]) -> bool:
    if profile.get("role") == Role.DRIVER.value:
        return bool(profile.get("cnhFile")) and bool(profile.get("selfie"))
    if profile.get("role") == Role.COMPANY.value:
        responsible = profile.get("responsible") or {}
        return bool(profile.get("cnpjCard")) and bool(responsible.get("document")) and bool(responsible.get("name"))
    return False


@router.post("/profile/documents/{kind}")
async def upload_document(
    kind: str,
    file: UploadFile = File(...),
    user: Dict[str, Any] = Depends(get_current_user),
):
    """Upload a verification document to Firebase Storage (status: pending)."""
    if kind not in _DOCUMENT_KINDS:
        raise HTTPException(status_code=400, detail=f"Tipo de documento inválido: {kind}")
    required_role, field = _DOCUMENT_KINDS[kind]
    if user.get("role") != required_role:
        raise HTTPException(status_code=403, detail="Documento não se aplica a este perfil.")

    if not file.filename:
        raise HTTPException(status_code=400, detail="Nenhum arquivo enviado.")
    file_ext = file.filename.lower().rsplit(".", 1)[-1]
    if file_ext not in _ALLOWED_EXTENSIONS:
        raise HTTPException(status_code=400, detail=f"Formato inválido. Permitidos: {', '.join(_ALLOWED_EXTENSIONS)}")
    file_data = await file.read()
    if len(file_data) > _MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="Tamanho máximo é 5MB.")

    uid = user["uid"]
    storage_path = f"users/{uid}/{kind}/{uuid.uuid4()}.{file_ext}"
    try:
        blob = bucket.blob(storage_path)
        await _to_thread(lambda: blob.upload_from_string(file_data, content_type=_ALLOWED_EXTENSIONS[file_ext]))
        await _to_thread(blob.make_public)
        url = blob.public_url
    except Exception as e:
        logger.error("Upload failed for %s: %s", storage_path, e)
        raise HTTPException(status_code=500, detail="Falha ao enviar o arquivo.")

    record = {"url": url, "status": DocumentStatus.PENDING.value}
    profile = dict(user)
    if field == "responsible.document":
        responsible = dict(profile.get("responsible") or {})
        responsible["document"] = record
        profile["responsible"] = responsible
        patch: Dict[str, Any] = {"responsible": responsible}
    else:
        profile[field] = record
        patch = {field: record}

    if profile.get("status") == UserStatus.INCOMPLETE.value and _documents_complete(profile):
        patch["status"] = UserStatus.PENDING.value

    db.collection("users").document(uid).set(patch, merge=True)
    log_action(uid, "DOCUMENT_UPLOAD", f"{kind} uploaded: {storage_path}")
    return {"kind": kind, "url": url, "status": patch.get("status", profile.get("status"))}
