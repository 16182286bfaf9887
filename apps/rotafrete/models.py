# File: apps/rotafrete/models.py
from pydantic import BaseModel, EmailStr, Field
from enum import Enum
from typing import Optional, Dict, Any, List, Literal
from datetime import date, datetime

# --- 1. Enums (Must be defined first) ---

class Role(str, Enum):
    DRIVER = "driver"
    COMPANY = "company"
    ADMIN = "admin"

class UserStatus(str, Enum):
    INCOMPLETE = "incomplete"
    PENDING = "pending"
    ACTIVE = "active"
    BLOCKED = "blocked"
    SUSPENDED = "suspended"

class DocumentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class FreightType(str, Enum):
    COMUM = "comum"
    AGREGAMENTO = "agregamento"
    COMPLETO = "frete completo"
    RETORNO = "frete retorno"

class FreightStatus(str, Enum):
    ATIVO = "ativo"
    PENDENTE = "pendente"
    CONCLUIDO = "concluido"
    CANCELADO = "cancelado"

class NotificationType(str, Enum):
    DOCUMENT_APPROVED = "document_approved"
    DOCUMENT_REJECTED = "document_rejected"
    USER_ACTIVATED = "user_activated"
    USER_BLOCKED = "user_blocked"
    USER_SUSPENDED = "user_suspended"
    PLAN_ASSIGNED = "plan_assigned"
    PLAN_EXPIRED = "plan_expired"
    FREIGHT_STATUS_CHANGED = "freight_status_changed"
    PAYMENT_CREATED = "payment_created"
    PAYMENT_STATUS_UPDATED = "payment_status_updated"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    SYSTEM_UPDATE = "system_update"
    GENERAL = "general"

class TicketStatus(str, Enum):
    ABERTO = "aberto"
    SUA_VEZ = "sua vez"
    RESPONDIDO = "respondido"
    FECHADO = "fechado"

# --- 2. Auth Models ---

class CompanySignup(BaseModel):
    cnpj: str
    razaoSocial: str = Field(..., min_length=3)
    nomeFantasia: str = Field(..., min_length=3)
    cep: str
    logradouro: str = Field(..., min_length=1)
    numero: str = Field(..., min_length=1)
    complemento: Optional[str] = None
    bairro: str = Field(..., min_length=1)
    cidade: str = Field(..., min_length=1)
    uf: str = Field(..., min_length=2, max_length=2)
    email: EmailStr
    password: str = Field(..., min_length=6)
    confirmPassword: str

class DriverSignup(BaseModel):
    fullName: str = Field(..., min_length=3)
    birthDate: date
    cpf: str
    phone: str = Field(..., min_length=10)
    confirmPhone: str
    email: EmailStr
    password: str = Field(..., min_length=6)
    confirmPassword: str
    cep: str
    logradouro: str = Field(..., min_length=1)
    numero: str = Field(..., min_length=1)
    complemento: Optional[str] = None
    bairro: str = Field(..., min_length=1)
    cidade: str = Field(..., min_length=1)
    uf: str = Field(..., min_length=2, max_length=2)
    hasCnpj: bool = False
    cnpj: Optional[str] = None
    issuesInvoice: bool = False
    issuesCte: bool = False
    hasAntt: bool = False
    cnhCategory: str = Field(..., min_length=1)
    cnhNumber: str = Field(..., min_length=5)
    cnhExpiration: date

class SignupResponse(BaseModel):
    uid: str
    email: str
    role: Role
    status: Literal["active", "pending", "blocked", "suspended"]
    redirect_to: str
    message: str

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class LoginResponse(BaseModel):
    custom_token: str
    uid: str
    role: Optional[str] = None
    redirect_to: str

class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    tradingName: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    cnh: Optional[str] = None
    cnhCategory: Optional[str] = None
    responsibleName: Optional[str] = None
    responsibleCpf: Optional[str] = None

class UserProfile(BaseModel):
    uid: str
    email: Optional[str] = None
    name: Optional[str] = None
    role: Optional[str] = None
    status: Optional[str] = None
    tradingName: Optional[str] = None
    cnpj: Optional[str] = None
    responsible: Optional[Dict[str, Any]] = None
    cnpjCard: Optional[Dict[str, Any]] = None
    cnh: Optional[str] = None
    cnhCategory: Optional[str] = None
    activePlanId: Optional[str] = None
    activePlanName: Optional[str] = None
    planExpiresAt: Optional[float] = None
    needsProfileCompletion: bool = False
    isPendingApproval: bool = False
    isBlocked: bool = False

# --- 3. Catalog Models ---

class VehicleCategoryIn(BaseModel):
    name: str = Field(..., min_length=1)

class VehicleCategory(VehicleCategoryIn):
    id: str

class VehicleTypeIn(BaseModel):
    name: str = Field(..., min_length=1)
    categoryId: str = Field(..., min_length=1)

class VehicleType(VehicleTypeIn):
    id: str

class BodyTypeIn(BaseModel):
    name: str = Field(..., min_length=1)
    group: str = Field(..., min_length=1)

class BodyType(BodyTypeIn):
    id: str

class VehicleIn(BaseModel):
    model: str = Field(..., min_length=1)
    licensePlate: str = Field(..., min_length=1)
    typeId: str = Field(..., min_length=1)
    categoryId: str = Field(..., min_length=1)

class VehicleUpdate(BaseModel):
    model: Optional[str] = None
    licensePlate: Optional[str] = None
    typeId: Optional[str] = None
    categoryId: Optional[str] = None

class Vehicle(VehicleIn):
    id: str
    driverId: Optional[str] = None

# --- 4. Plans ---

class AllowedFreightTypes(BaseModel):
    agregamento: bool = False
    completo: bool = False
    retorno: bool = False

class PlanIn(BaseModel):
    name: str = Field(..., min_length=2)
    description: str = Field(..., min_length=10)
    durationDays: int = Field(..., gt=0)
    pricePix: float = Field(..., gt=0)
    priceCard: float = Field(..., gt=0)
    userType: Role = Role.COMPANY
    freightLimitType: Optional[str] = None  # unlimited | limited
    freightLimit: Optional[int] = None
    allowedFreightTypes: Optional[AllowedFreightTypes] = None
    collaboratorLimitType: Optional[str] = None
    collaboratorLimit: Optional[int] = None
    hasStatisticsAccess: bool = False
    hasReturningDriversAccess: bool = False

class PlanUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2)
    description: Optional[str] = Field(default=None, min_length=10)
    durationDays: Optional[int] = Field(default=None, gt=0)
    pricePix: Optional[float] = Field(default=None, gt=0)
    priceCard: Optional[float] = Field(default=None, gt=0)
    userType: Optional[Role] = None
    freightLimitType: Optional[str] = None
    freightLimit: Optional[int] = None
    allowedFreightTypes: Optional[AllowedFreightTypes] = None
    collaboratorLimitType: Optional[str] = None
    collaboratorLimit: Optional[int] = None
    hasStatisticsAccess: Optional[bool] = None
    hasReturningDriversAccess: Optional[bool] = None

class Plan(PlanIn):
    id: str
    features: List[str] = []

class AssignPlanRequest(BaseModel):
    planId: str

class PaymentCustomer(BaseModel):
    name: str = Field(..., min_length=3)
    email: EmailStr
    cpf: Optional[str] = None
    cnpj: Optional[str] = None
    phoneAreaCode: Optional[str] = Field(default=None, pattern=r"^\d{2}$")
    phone: Optional[str] = Field(default=None, pattern=r"^\d{8,9}$")

class CardData(BaseModel):
    token: str = Field(..., min_length=1)
    brand: Optional[str] = None
    lastDigits: Optional[str] = Field(default=None, pattern=r"^\d{4}$")
    holderName: str = Field(..., min_length=3)
    holderCpf: str
    holderBirthDate: str = Field(..., pattern=r"^\d{2}/\d{2}/\d{4}$")

class ChargeCreate(BaseModel):
    planId: str = Field(..., min_length=1)
    customer: PaymentCustomer

class CardChargeCreate(ChargeCreate):
    card: CardData
    installments: int = Field(default=1, ge=1, le=12)

# --- 5. Freights ---

class Place(BaseModel):
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=2, max_length=2)

class FreightBase(BaseModel):
    origin: Place
    requiredVehicles: List[str] = []
    requiredBodyworks: List[str] = []
    cargo: Optional[str] = None
    weight: Optional[float] = None
    value: Optional[float] = None
    notes: Optional[str] = None
    collaboratorId: Optional[str] = None
    responsibleCollaborators: List[str] = []

class AggregationFreightCreate(FreightBase):
    destinations: List[Place] = Field(..., min_length=1)

class CompleteFreightCreate(FreightBase):
    freightType: str = Field(..., pattern="^(completo|retorno)$")
    destinations: List[Place] = Field(..., min_length=1)

class CommonFreightCreate(FreightBase):
    destinations: List[Place] = Field(..., min_length=1)

class FreightCreatedResponse(BaseModel):
    ids: List[str]

class FreightStatusUpdate(BaseModel):
    status: FreightStatus

class FreightStats(BaseModel):
    total: int = 0
    active: int = 0
    pending: int = 0
    completed: int = 0
    cancelled: int = 0

# --- 6. Return trips ---

class ReturnDestination(BaseModel):
    destinationType: str = Field(..., pattern="^(brasil|estado|cidade)$")
    destinationState: Optional[str] = None
    destinationCity: Optional[str] = None

class ReturnTripCreate(BaseModel):
    origin: str = Field(..., min_length=3)
    departureDate: datetime
    vehicle: str = Field(..., min_length=1)
    availability: str = Field(..., pattern="^(vazio|parcial)$")
    notes: Optional[str] = None
    hasCnpj: bool = False
    issuesInvoice: bool = False
    returns: List[ReturnDestination] = Field(..., min_length=1, max_length=5)

class ReturnTripStatusUpdate(BaseModel):
    status: str = Field(..., pattern="^(active|inactive)$")

# --- 7. Collaborators ---

class CollaboratorIn(BaseModel):
    name: str = Field(..., min_length=1)
    internalId: Optional[str] = None
    cpf: str = Field(..., min_length=1)
    department: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)

class CollaboratorUpdate(BaseModel):
    name: Optional[str] = None
    internalId: Optional[str] = None
    cpf: Optional[str] = None
    department: Optional[str] = None
    phone: Optional[str] = None

class Collaborator(CollaboratorIn):
    id: str

class CollaboratorStats(BaseModel):
    totalFreights: int
    activeFreights: int
    completedFreights: int

# --- 8. Notifications ---

class Notification(BaseModel):
    id: str
    title: str
    message: str
    type: str = NotificationType.GENERAL.value
    isRead: bool = False
    createdAt: Optional[str] = None

class NotificationListResponse(BaseModel):
    notifications: List[Notification]
    unreadCount: int

class CitySubscription(BaseModel):
    cities: List[str] = []

# --- 9. Support ---

class TicketCreate(BaseModel):
    subject: str = Field(..., min_length=3, max_length=120)
    message: str = Field(..., min_length=1, max_length=4000)

class TicketMessageCreate(BaseModel):
    text: str = Field(..., min_length=1, max_length=4000)

# --- 10. Admin ---

class UserStatusUpdate(BaseModel):
    status: Literal["active", "pending", "blocked", "suspended"]

class DocumentStatusUpdate(BaseModel):
    docField: str = Field(..., pattern=r"^(responsible\.document|cnpjCard)$")
    status: DocumentStatus

class AdminUserUpdate(BaseModel):
    name: Optional[str] = None
    tradingName: Optional[str] = None
    cnpj: Optional[str] = None
    address: Optional[str] = None
    responsibleName: Optional[str] = None
    responsibleCpf: Optional[str] = None

class DashboardMetrics(BaseModel):
    totalUsers: int
    newUsersToday: int
    pendingVerifications: int
    activeFreights: int
    pendingFreights: int
    completedFreights: int

class BulkApproveRequest(BaseModel):
    uids: List[str] = Field(..., min_length=1)

class SystemNotificationCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=120)
    message: str = Field(..., min_length=1, max_length=2000)
    target: Literal["all", "companies", "drivers"] = "all"
    userIds: Optional[List[str]] = None
