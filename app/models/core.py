"""
Reference entities owned by external directories.

Providers and insurance companies are maintained elsewhere; the billing
engine keeps a local copy so claims, invoices and remittance matching can
join against them. Both inherit Base and TimestampMixin.
"""
from sqlalchemy import Boolean, Column, Integer, String
from sqlalchemy.orm import relationship

from app.config.database import Base, TimestampMixin


class Provider(Base, TimestampMixin):
    """
    Rendering/billing provider.

    Attributes:
        npi: National Provider Identifier (10 digits, unique)
        name: Provider display name
        specialty: Provider specialty
    """

    __tablename__ = "providers"

    id = Column(Integer, primary_key=True, index=True)
    npi = Column(String(10), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    specialty = Column(String(100))

    claims = relationship("Claim", back_populates="provider")
    invoices = relationship("Invoice", back_populates="provider")


class InsuranceCompany(Base, TimestampMixin):
    """
    Insurance company (payer) directory entry.

    Remittance lines carry a payer name; `InsuranceCompany.name` is matched
    case-insensitively to scope fuzzy matching to the same payer.

    Attributes:
        payer_code: Payer identifier used on claims (e.g. clearinghouse payer ID)
        name: Payer name as printed on remittances
        is_active: Inactive payers are kept for history but not offered for new claims
    """

    __tablename__ = "insurance_companies"

    id = Column(Integer, primary_key=True, index=True)
    payer_code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    claims = relationship(
        "Claim",
        back_populates="insurance_company",
        foreign_keys="Claim.insurance_company_id",
    )
