"""
Onboarding schemas - pharmacy registration
"""
from pydantic import BaseModel, EmailStr, Field
from typing import Literal, Optional
from uuid import UUID


class PharmacyRegistration(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    address: str = Field(..., min_length=1)
    phone: Optional[str] = None
    email: Optional[EmailStr] = None


class RegisterRequest(BaseModel):
    """Register a pharmacy with its main branch and first user"""
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    role: Literal["ADMIN", "MANAGER", "PHARMACIST", "CASHIER"] = "ADMIN"
    pharmacy: PharmacyRegistration


class RegisterResponse(BaseModel):
    message: str
    pharmacy_id: UUID
    branch_id: UUID
    user_id: UUID
    trial_subscription_created: bool
    trial_subscription_error: Optional[str] = None
