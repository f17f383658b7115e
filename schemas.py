"""
Database Schemas for the Rendiconti backend

Each collection schema is a Pydantic model.
The collection name is the lowercase of the class name:

- User -> "user"
- Category -> "category"
- Beneficiary -> "beneficiary"
- Report -> "report"

Request payloads (create / partial update DTOs) live at the bottom of the
module. Partial updates are applied with model_dump(exclude_unset=True), so
each DTO doubles as the allow-list of fields an endpoint may change.
"""

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

FISCAL_CODE_PATTERN = r"^[A-Z]{6}[0-9]{2}[A-Z][0-9]{2}[A-Z][0-9]{3}[A-Z]$"
PHONE_PATTERN = r"^\+?[0-9\s\-()]{8,15}$"
COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"
DEFAULT_COLOR = "#6c757d"


def _upper(value):
    if isinstance(value, str):
        return value.strip().upper()
    return value


class Role(str, Enum):
    ADMINISTRATOR = "administrator"
    GUARDIAN = "guardian"


ALL_ROLES = (Role.ADMINISTRATOR, Role.GUARDIAN)


class ReportState(str, Enum):
    DRAFT = "draft"
    COMPLETED = "completed"
    SUBMITTED = "submitted"


class SaveMode(str, Enum):
    DRAFT = "draft"
    FINAL = "final"
    PDF = "pdf"


class DeleteOutcome(str, Enum):
    DELETED = "deleted"
    DEACTIVATED = "deactivated"
    HARD_DELETED = "hard_deleted"
    SOFT_DELETED = "soft_deleted"


# ----------------------
# Embedded documents
# ----------------------
class Address(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    street: Optional[str] = Field(None, max_length=200)
    city: Optional[str] = Field(None, max_length=100)
    postal_code: Optional[str] = Field(None, pattern=r"^[0-9]{5}$")
    province: Optional[str] = Field(None, min_length=2, max_length=2)

    @field_validator("province", mode="before")
    @classmethod
    def upper_province(cls, value):
        return _upper(value)


class Asset(BaseModel):
    """One item of a net-worth declaration."""
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=1, max_length=500)
    value: float = Field(..., ge=0)


class NetWorth(BaseModel):
    real_estate: List[Asset] = Field(default_factory=list)
    movable_assets: List[Asset] = Field(default_factory=list)
    financial_assets: List[Asset] = Field(default_factory=list, description="Securities and bank accounts")


class LedgerEntry(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    category: str = Field(..., min_length=1, description="Category name (weak reference)")
    description: Optional[str] = Field(None, max_length=300)
    amount: float = Field(..., ge=0)

    @field_validator("category", mode="before")
    @classmethod
    def upper_category(cls, value):
        return _upper(value)


class Ledger(BaseModel):
    income: List[LedgerEntry] = Field(default_factory=list)
    expense: List[LedgerEntry] = Field(default_factory=list)


class Period(BaseModel):
    start: date
    end: date

    @model_validator(mode="after")
    def end_after_start(self):
        if self.end <= self.start:
            raise ValueError("The end date must be after the start date")
        return self


class AppliedSignature(BaseModel):
    image: str
    applied_at: datetime


class SignatureBlock(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    truthfulness_declaration: bool = False
    data_processing_consent: bool = False
    place: Optional[str] = Field(None, max_length=100)
    signing_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=1000)
    applied_signature: Optional[AppliedSignature] = None
    save_mode: Optional[SaveMode] = None


# ----------------------
# Collections
# ----------------------
class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    name: str = Field(..., description="First name")
    surname: str = Field(..., description="Last name")
    email: EmailStr = Field(..., description="Email address (unique)")
    password_hash: str = Field(..., description="BCrypt hashed password")
    fiscal_code: str = Field(..., description="Italian fiscal code (unique)")
    phone: Optional[str] = None
    address: Optional[str] = None
    role: Role = Field(Role.ADMINISTRATOR, description="administrator or guardian")
    is_active: bool = Field(True, description="Whether user is active")
    signature_image: Optional[str] = Field(None, description="Signature file path or data URL")
    last_login: Optional[datetime] = None


class Category(BaseModel):
    """
    Categories collection schema
    Collection name: "category"

    Global categories have is_default=True and no user_id; private ones
    belong to exactly one user.
    """
    name: str
    description: Optional[str] = None
    color: str = DEFAULT_COLOR
    is_default: bool = False
    user_id: Optional[str] = None
    is_active: bool = True

    @model_validator(mode="after")
    def owner_iff_private(self):
        if self.is_default and self.user_id is not None:
            raise ValueError("Default categories cannot have an owner")
        if not self.is_default and self.user_id is None:
            raise ValueError("Custom categories must have an owner")
        return self


class Beneficiary(BaseModel):
    """
    Beneficiaries collection schema
    Collection name: "beneficiary"
    """
    user_id: str = Field(..., description="Owning administrator")
    name: str
    surname: str
    fiscal_code: str
    birth_date: date
    birth_place: Optional[str] = None
    address: Address = Field(default_factory=Address)
    notes: Optional[str] = None
    personal_conditions: Optional[str] = None
    net_worth: NetWorth = Field(default_factory=NetWorth)
    is_active: bool = True


class Report(BaseModel):
    """
    Financial reports collection schema
    Collection name: "report"
    """
    user_id: str
    beneficiary_id: str
    period: Period
    year: int = Field(..., description="Derived from period.start")
    case_reference: str = Field(..., description="R.G. number")
    personal_conditions: Optional[str] = None
    ledger: Ledger = Field(default_factory=Ledger)
    signature: SignatureBlock = Field(default_factory=SignatureBlock)
    state: ReportState = ReportState.DRAFT
    notes: Optional[str] = None


# ----------------------
# Request payloads
# ----------------------
class RegisterRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=2, max_length=50)
    surname: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    fiscal_code: str = Field(..., pattern=FISCAL_CODE_PATTERN)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    address: Optional[str] = Field(None, max_length=500)
    role: Role = Role.ADMINISTRATOR

    @field_validator("fiscal_code", mode="before")
    @classmethod
    def upper_fiscal_code(cls, value):
        return _upper(value)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(None, min_length=2, max_length=50)
    surname: Optional[str] = Field(None, min_length=2, max_length=50)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    address: Optional[str] = Field(None, max_length=500)


class FullProfileUpdate(ProfileUpdate):
    birth_date: Optional[date] = None
    birth_place: Optional[str] = Field(None, max_length=100)
    profession: Optional[str] = Field(None, max_length=100)
    register_number: Optional[str] = Field(None, max_length=50, description="Professional register number")
    pec: Optional[EmailStr] = Field(None, description="Certified email address")


class PasswordConfirm(BaseModel):
    password: str = Field(..., min_length=1)


class SignatureDataUrl(PasswordConfirm):
    signature: str = Field(..., min_length=1, description="data:image/...;base64,... payload")


class CategoryCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=200)
    color: Optional[str] = Field(None, pattern=COLOR_PATTERN)

    @field_validator("name", mode="before")
    @classmethod
    def upper_name(cls, value):
        return _upper(value)


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=200)
    color: Optional[str] = Field(None, pattern=COLOR_PATTERN)

    @field_validator("name", mode="before")
    @classmethod
    def upper_name(cls, value):
        return _upper(value)


class BeneficiaryFields(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    birth_place: Optional[str] = Field(None, max_length=100)
    address: Optional[Address] = None
    notes: Optional[str] = Field(None, max_length=1000)
    personal_conditions: Optional[str] = Field(None, max_length=5000)
    net_worth: Optional[NetWorth] = None


class BeneficiaryCreate(BeneficiaryFields):
    name: str = Field(..., min_length=1, max_length=50)
    surname: str = Field(..., min_length=1, max_length=50)
    fiscal_code: str = Field(..., pattern=FISCAL_CODE_PATTERN)
    birth_date: date

    @field_validator("fiscal_code", mode="before")
    @classmethod
    def upper_fiscal_code(cls, value):
        return _upper(value)


class BeneficiaryUpdate(BeneficiaryFields):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    surname: Optional[str] = Field(None, min_length=1, max_length=50)
    fiscal_code: Optional[str] = Field(None, pattern=FISCAL_CODE_PATTERN)
    birth_date: Optional[date] = None

    @field_validator("fiscal_code", mode="before")
    @classmethod
    def upper_fiscal_code(cls, value):
        return _upper(value)


class ReportCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    beneficiary_id: str
    period: Period
    case_reference: str = Field(..., min_length=1, max_length=50)
    personal_conditions: Optional[str] = Field(None, max_length=5000)
    ledger: Optional[Ledger] = None
    signature: Optional[SignatureBlock] = None
    notes: Optional[str] = Field(None, max_length=1000)


class ReportUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    period: Optional[Period] = None
    case_reference: Optional[str] = Field(None, min_length=1, max_length=50)
    personal_conditions: Optional[str] = Field(None, max_length=5000)
    ledger: Optional[Ledger] = None
    signature: Optional[SignatureBlock] = None
    notes: Optional[str] = Field(None, max_length=1000)


class StateChange(BaseModel):
    state: ReportState
