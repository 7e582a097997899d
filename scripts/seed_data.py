#!/usr/bin/env python3
"""Seed reference data and a few demo claims for development."""
import os
import sys
from datetime import date, timedelta

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from app.config.database import SessionLocal, engine, Base, get_all_models
from app.models.core import InsuranceCompany, Provider
from app.models.database import Invoice
from app.services.billing.invoices import InvoiceService
from app.services.claims.service import ClaimService
from app.utils.logger import get_logger

logger = get_logger(__name__)


def seed_insurance_companies(db: Session) -> None:
    """
    Seed initial payers into the database.

    Args:
        db: SQLAlchemy database session

    Raises:
        SQLAlchemyError: If database operation fails
    """
    payers = [
        {"payer_code": "MEDICARE", "name": "Medicare"},
        {"payer_code": "MEDICAID", "name": "Medicaid"},
        {"payer_code": "BCBS", "name": "Blue Cross Blue Shield"},
        {"payer_code": "AETNA", "name": "Aetna"},
    ]

    for payer_data in payers:
        existing = (
            db.query(InsuranceCompany)
            .filter(InsuranceCompany.payer_code == payer_data["payer_code"])
            .first()
        )
        if existing:
            logger.info("Insurance company already exists, skipping", payer_code=payer_data["payer_code"])
            continue

        db.add(InsuranceCompany(**payer_data))
        logger.info("Created insurance company", name=payer_data["name"], payer_code=payer_data["payer_code"])

    db.commit()


def seed_providers(db: Session) -> None:
    """Seed initial providers into the database."""
    providers = [
        {"npi": "1234567890", "name": "Dr. John Smith", "specialty": "Internal Medicine"},
        {"npi": "0987654321", "name": "Dr. Jane Doe", "specialty": "Cardiology"},
    ]

    for provider_data in providers:
        existing = db.query(Provider).filter(Provider.npi == provider_data["npi"]).first()
        if existing:
            logger.info("Provider already exists, skipping", npi=provider_data["npi"])
            continue

        db.add(Provider(**provider_data))
        logger.info("Created provider", name=provider_data["name"], npi=provider_data["npi"])

    db.commit()


def seed_demo_claims(db: Session) -> None:
    """
    Create and submit one claim per demo appointment.

    The claim numbers are logged; use them in `samples/` to try a
    remittance import end to end.
    """
    provider = db.query(Provider).filter(Provider.npi == "1234567890").one()
    payer = db.query(InsuranceCompany).filter(InsuranceCompany.payer_code == "BCBS").one()
    service_date = date.today() - timedelta(days=14)

    appointments = [
        ("APT-1001", "P-1001", "Maria Garcia", "1980-04-12", [("99213", "Office visit, established", "150.00")]),
        ("APT-1002", "P-1002", "James Wilson", "1975-09-30", [("99214", "Office visit, moderate", "200.00")]),
        ("APT-1003", "P-1003", "Linda Chen", "1990-01-05", [("93000", "Electrocardiogram", "120.00")]),
    ]

    invoices = InvoiceService(db)
    claims = ClaimService(db)
    for appointment_id, patient_id, name, dob, lines in appointments:
        if db.query(Invoice).filter(Invoice.appointment_id == appointment_id).first():
            logger.info("Appointment already invoiced, skipping", appointment_id=appointment_id)
            continue

        first_name, last_name = name.split(" ", 1)
        invoice = invoices.create_from_appointment(appointment_id, {
            "patient_id": patient_id,
            "patient_name": name,
            "provider_id": provider.id,
            "insurance_company_id": payer.id,
            "issue_date": service_date,
            "line_items": [
                {"service_code": code, "description": description, "quantity": 1, "unit_price": price}
                for code, description, price in lines
            ],
        })
        claim = claims.create_from_invoice(invoice.id, {
            "diagnosis_codes": ["I10"],
            "patient_info": {"first_name": first_name, "last_name": last_name, "date_of_birth": dob},
            "insurance_info": {"policy_number": f"POL{patient_id[-4:]}", "group_number": "GRP100"},
        })
        claim = claims.submit_claim(claim.id)
        logger.info(
            "Created demo claim",
            claim_number=claim.claim_number,
            invoice_number=invoice.invoice_number,
            patient_name=name,
        )


def main() -> None:
    """Main seeding function."""
    logger.info("Starting data seeding...")

    get_all_models()
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()

    try:
        seed_insurance_companies(db)
        seed_providers(db)
        seed_demo_claims(db)
        logger.info("Data seeding completed successfully!")
    except IntegrityError as e:
        logger.error("Database integrity error during seeding", error=str(e), exc_info=True)
        db.rollback()
        raise
    except SQLAlchemyError as e:
        logger.error("Database error during seeding", error=str(e), exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
