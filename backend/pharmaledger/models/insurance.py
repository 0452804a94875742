"""
Insurance models: providers, plans with per-product/category coverage
overrides, patient enrolments and claims generated from sales.
"""
from sqlalchemy import Column, String, Integer, Numeric, Date, ForeignKey, Text, Boolean
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import TIMESTAMP
import uuid
from pharmaledger.database import Base


class InsuranceStatus:
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    SUSPENDED = "SUSPENDED"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"


class ClaimStatus:
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    PARTIALLY_APPROVED = "PARTIALLY_APPROVED"
    REJECTED = "REJECTED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class InsuranceProvider(Base):
    __tablename__ = "insurance_providers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    code = Column(String(50), unique=True, nullable=False)
    phone = Column(String(50))
    email = Column(String(255))
    is_active = Column(Boolean, default=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    plans = relationship("InsurancePlan", back_populates="provider", cascade="all, delete-orphan")


class InsurancePlan(Base):
    __tablename__ = "insurance_plans"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    provider_id = Column(UUID(as_uuid=True), ForeignKey("insurance_providers.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    code = Column(String(50), nullable=False)
    coverage_percentage = Column(Numeric(5, 2), nullable=False, default=0)  # Plan default, 0-100
    annual_limit = Column(Numeric(20, 4), nullable=True)
    requires_approval = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    provider = relationship("InsuranceProvider", back_populates="plans")
    coverage_items = relationship("PlanCoverageItem", back_populates="plan", cascade="all, delete-orphan")


class PlanCoverageItem(Base):
    """Coverage override for one product or one product category within a plan"""
    __tablename__ = "plan_coverage_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    plan_id = Column(UUID(as_uuid=True), ForeignKey("insurance_plans.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id", ondelete="CASCADE"), nullable=True)
    category = Column(String(100), nullable=True)
    coverage_percentage = Column(Numeric(5, 2), nullable=True)  # Null = no override
    max_quantity = Column(Integer, nullable=True)
    requires_approval = Column(Boolean, default=False)

    plan = relationship("InsurancePlan", back_populates="coverage_items")


class PatientInsurance(Base):
    """Patient enrolment on a plan"""
    __tablename__ = "patient_insurances"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    patient_id = Column(UUID(as_uuid=True), ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    plan_id = Column(UUID(as_uuid=True), ForeignKey("insurance_plans.id", ondelete="CASCADE"), nullable=False)
    member_number = Column(String(100), nullable=False)
    status = Column(String(50), nullable=False, default=InsuranceStatus.ACTIVE)  # ACTIVE, EXPIRED, SUSPENDED, PENDING_VERIFICATION
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    patient = relationship("Patient", back_populates="insurances")
    plan = relationship("InsurancePlan")


class InsuranceClaim(Base):
    __tablename__ = "insurance_claims"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    claim_number = Column(String(100), unique=True, nullable=False)  # CLM-{YYYYMMDD}-{NNNN}
    sale_id = Column(UUID(as_uuid=True), ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, unique=True)
    provider_id = Column(UUID(as_uuid=True), ForeignKey("insurance_providers.id"), nullable=False)
    patient_insurance_id = Column(UUID(as_uuid=True), ForeignKey("patient_insurances.id"), nullable=False)
    total_amount = Column(Numeric(20, 4), nullable=False)
    covered_amount = Column(Numeric(20, 4), nullable=False)
    patient_responsibility = Column(Numeric(20, 4), nullable=False)
    status = Column(String(50), nullable=False, default=ClaimStatus.SUBMITTED)
    submission_date = Column(TIMESTAMP(timezone=True), nullable=False)
    approval_date = Column(TIMESTAMP(timezone=True), nullable=True)
    approved_by = Column(String(255), nullable=True)  # Insurer-side reviewer
    rejection_reason = Column(Text)
    payment_date = Column(TIMESTAMP(timezone=True), nullable=True)
    payment_reference = Column(String(255))
    notes = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    sale = relationship("Sale", back_populates="claim")
    provider = relationship("InsuranceProvider")
    patient_insurance = relationship("PatientInsurance")
    items = relationship("InsuranceClaimItem", back_populates="claim", cascade="all, delete-orphan")


class InsuranceClaimItem(Base):
    __tablename__ = "insurance_claim_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    claim_id = Column(UUID(as_uuid=True), ForeignKey("insurance_claims.id", ondelete="CASCADE"), nullable=False, index=True)
    sale_item_id = Column(UUID(as_uuid=True), ForeignKey("sale_items.id", ondelete="CASCADE"), nullable=False)
    approved_quantity = Column(Integer, nullable=False)
    claimed_amount = Column(Numeric(20, 4), nullable=False, default=0)
    approved_amount = Column(Numeric(20, 4), nullable=True)
    rejection_reason = Column(Text)

    claim = relationship("InsuranceClaim", back_populates="items")
    sale_item = relationship("SaleItem")
