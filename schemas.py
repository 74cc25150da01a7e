from datetime import datetime
from decimal import Decimal
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field
from pydantic.alias_generators import to_camel

from models import (
    NotificationType,
    PaymentStatus,
    ProjectStatus,
    ReferralStatus,
    TicketPriority,
    TicketStatus,
    UserRole,
)


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


# Auth

class UserCreate(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    full_name: str = Field(..., min_length=2)
    role: Literal["client", "partner"] = "client"
    referral_code: Optional[str] = None


class LoginIn(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=6)


class UserOut(CamelModel):
    id: int
    email: EmailStr
    full_name: str
    role: UserRole
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserUpdate(CamelModel):
    full_name: Optional[str] = Field(None, min_length=2)
    is_active: Optional[bool] = None
    password: Optional[str] = Field(None, min_length=6)


class AuthOut(CamelModel):
    user: UserOut
    token: str
    message: str


class TokenData(BaseModel):
    user_id: Optional[int] = None


class MessageOut(BaseModel):
    message: str


# Partners

class PartnerCreate(CamelModel):
    user_id: int
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=100, decimal_places=2)


class PartnerOut(CamelModel):
    id: int
    user_id: int
    referral_code: str
    commission_rate: Decimal
    total_earnings: Decimal
    created_at: Optional[datetime] = None


class PartnerStats(CamelModel):
    total_earnings: Decimal
    active_referrals: int
    closed_sales: int
    conversion_rate: int


class PartnerProfileOut(PartnerOut):
    active_referrals: int
    closed_sales: int
    conversion_rate: int


class ReferralOut(CamelModel):
    id: int
    partner_id: int
    client_id: int
    project_id: Optional[int] = None
    status: ReferralStatus
    commission_amount: Optional[Decimal] = None
    converted_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ReferralListItem(CamelModel):
    id: int
    status: ReferralStatus
    commission_amount: Optional[Decimal] = None
    created_at: Optional[datetime] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    project_name: Optional[str] = None
    project_price: Optional[Decimal] = None


# Projects

class ProjectCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    price: Decimal = Field(..., gt=0, decimal_places=2)
    status: ProjectStatus = ProjectStatus.PENDING
    progress: int = Field(0, ge=0, le=100)
    client_id: Optional[int] = None
    partner_id: Optional[int] = None
    delivery_date: Optional[datetime] = None


class ProjectUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, gt=0, decimal_places=2)
    status: Optional[ProjectStatus] = None
    progress: Optional[int] = Field(None, ge=0, le=100)
    delivery_date: Optional[datetime] = None


class ProjectOut(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    price: Decimal
    status: ProjectStatus
    progress: int
    client_id: int
    partner_id: Optional[int] = None
    delivery_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Tickets

class TicketCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    priority: TicketPriority = TicketPriority.MEDIUM
    project_id: Optional[int] = None


class TicketUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[TicketStatus] = None
    priority: Optional[TicketPriority] = None


class TicketOut(CamelModel):
    id: int
    title: str
    description: str
    status: TicketStatus
    priority: TicketPriority
    user_id: int
    project_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Notifications

class NotificationOut(CamelModel):
    id: int
    user_id: int
    title: str
    message: str
    type: NotificationType
    is_read: bool
    created_at: Optional[datetime] = None


# Payments

class PaymentCreate(CamelModel):
    project_id: int
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    description: Optional[str] = None


class PaymentOut(CamelModel):
    id: int
    project_id: int
    amount: Decimal
    status: PaymentStatus
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    created_at: Optional[datetime] = None


class PaymentPreferenceOut(CamelModel):
    payment_id: int
    preference_id: str
    init_point: Optional[str] = None


class WebhookData(BaseModel):
    id: str


class WebhookEvent(BaseModel):
    type: Optional[str] = None
    action: Optional[str] = None
    data: Optional[WebhookData] = None


class GatewayConfigIn(CamelModel):
    access_token: Optional[str] = None
    public_key: Optional[str] = None
    webhook_secret: Optional[str] = None


class GatewayConfigOut(CamelModel):
    public_key: str
    has_access_token: bool
    has_webhook_secret: bool


# Admin

class AdminStats(CamelModel):
    total_users: int
    active_partners: int
    active_projects: int
    monthly_revenue: Decimal


# Contact

class ContactIn(CamelModel):
    full_name: str = Field(..., min_length=2)
    email: EmailStr
    company: Optional[str] = None
    service_type: Optional[str] = None
    budget: Optional[str] = None
    message: str = Field(..., min_length=10)
    accept_terms: Literal[True]


class EchoOut(BaseModel):
    type: str
    data: Any = None
    message: Optional[str] = None
    timestamp: str
