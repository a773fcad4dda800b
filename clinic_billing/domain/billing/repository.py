"""Billing repository - Database operations for charges and invoices"""

import hashlib
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from ...models import BillingCompany, Consultation, Person
from ...models_invoice import ChargeLock, Invoice


def charge_lock_key(consultation_ids: list[int]) -> str:
    """Stable key for a consultation set, independent of order and duplicates"""
    canonical = ",".join(str(i) for i in sorted(set(consultation_ids)))
    return hashlib.sha256(canonical.encode()).hexdigest()


class BillingRepository:
    """Repository for billing database operations"""

    @staticmethod
    def get_billing_company(db: Session, company_id: int) -> Optional[BillingCompany]:
        return db.query(BillingCompany).filter(BillingCompany.id == company_id).first()

    @staticmethod
    def get_person(db: Session, person_id: int) -> Optional[Person]:
        return db.query(Person).filter(Person.id == person_id).first()

    @staticmethod
    def get_consultations(db: Session, consultation_ids: list[int]) -> list[Consultation]:
        """Load consultations with everything the charge description needs"""
        return (
            db.query(Consultation)
            .options(
                joinedload(Consultation.professional),
                joinedload(Consultation.patient),
                joinedload(Consultation.service_type),
            )
            .filter(Consultation.id.in_(consultation_ids))
            .all()
        )

    # ------------------------------------------------------------------
    # In-flight guard
    # ------------------------------------------------------------------

    @staticmethod
    def acquire_charge_lock(
        db: Session, consultation_ids: list[int], user_id: Optional[int], now: datetime, ttl_seconds: int
    ) -> Optional[ChargeLock]:
        """
        Take the lock for a consultation set.

        Returns:
            The lock, or None when a live lock already exists for the same set
        """
        key = charge_lock_key(consultation_ids)

        # Expired locks (crashed request) are replaced
        db.query(ChargeLock).filter(ChargeLock.lock_key == key, ChargeLock.expires_at <= now).delete(
            synchronize_session=False
        )

        lock = ChargeLock(
            lock_key=key,
            consultation_ids=sorted(set(consultation_ids)),
            acquired_by=user_id,
            acquired_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )
        db.add(lock)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return None
        return lock

    @staticmethod
    def release_charge_lock(db: Session, lock_key: str) -> None:
        db.query(ChargeLock).filter(ChargeLock.lock_key == lock_key).delete(synchronize_session=False)
        db.commit()

    # ------------------------------------------------------------------
    # Consultation linking
    # ------------------------------------------------------------------

    @staticmethod
    def link_consultations(
        db: Session, consultation_ids: list[int], payment_reference: str, now: datetime
    ) -> int:
        """Set payment_reference on consultations still unlinked. Returns rows updated (not committed)."""
        return (
            db.query(Consultation)
            .filter(Consultation.id.in_(consultation_ids), Consultation.payment_reference.is_(None))
            .update(
                {Consultation.payment_reference: payment_reference, Consultation.charged_at: now},
                synchronize_session=False,
            )
        )

    @staticmethod
    def unlink_consultations(db: Session, invoice: Invoice) -> int:
        """Release consultations of a cancelled invoice so they can be charged again"""
        query = db.query(Consultation).filter(
            (Consultation.invoice_id == invoice.id)
            | (Consultation.payment_reference == invoice.external_payment_id)
        )
        return query.update(
            {
                Consultation.payment_reference: None,
                Consultation.invoice_id: None,
                Consultation.charged_at: None,
            },
            synchronize_session=False,
        )

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    @staticmethod
    def create_invoice(db: Session, consultation_ids: list[int], **fields) -> Invoice:
        """Insert the ledger row and back-link the consultations (committed)"""
        invoice = Invoice(consultation_ids=list(consultation_ids), **fields)
        db.add(invoice)
        db.flush()

        invoice.internal_number = f"FAT-{invoice.id:06d}"
        db.query(Consultation).filter(Consultation.id.in_(consultation_ids)).update(
            {Consultation.invoice_id: invoice.id}, synchronize_session=False
        )

        db.commit()
        db.refresh(invoice)
        return invoice

    @staticmethod
    def get_invoice(db: Session, invoice_id: int) -> Optional[Invoice]:
        return db.query(Invoice).filter(Invoice.id == invoice_id).first()

    @staticmethod
    def get_invoice_by_payment_id(db: Session, external_payment_id: str) -> Optional[Invoice]:
        return db.query(Invoice).filter(Invoice.external_payment_id == external_payment_id).first()

    @staticmethod
    def list_invoices(
        db: Session,
        billing_company_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        responsible_party_id: Optional[int] = None,
        status: Optional[str] = None,
        include_inactive: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> list[Invoice]:
        query = db.query(Invoice)

        if not include_inactive:
            query = query.filter(Invoice.is_active.is_(True))
        if billing_company_id is not None:
            query = query.filter(Invoice.billing_company_id == billing_company_id)
        if patient_id is not None:
            query = query.filter(Invoice.patient_id == patient_id)
        if responsible_party_id is not None:
            query = query.filter(Invoice.responsible_party_id == responsible_party_id)
        if status:
            query = query.filter(Invoice.status == status)

        return query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).offset(skip).limit(limit).all()

    @staticmethod
    def invoice_metrics(db: Session, today: date, billing_company_id: Optional[int] = None) -> dict:
        """Counts and totals per status plus pending invoices due within a week"""
        base = db.query(Invoice)
        if billing_company_id is not None:
            base = base.filter(Invoice.billing_company_id == billing_company_id)

        rows = (
            base.with_entities(Invoice.status, func.count(Invoice.id), func.coalesce(func.sum(Invoice.total_value), 0))
            .group_by(Invoice.status)
            .all()
        )
        by_status = {status: {"count": count, "total": round(float(total), 2)} for status, count, total in rows}

        due_count, due_total = (
            base.with_entities(func.count(Invoice.id), func.coalesce(func.sum(Invoice.total_value), 0))
            .filter(
                Invoice.status == "pending",
                Invoice.due_date >= today,
                Invoice.due_date <= today + timedelta(days=7),
            )
            .one()
        )

        return {
            "by_status": by_status,
            "total_count": sum(entry["count"] for entry in by_status.values()),
            "total_value": round(sum(entry["total"] for entry in by_status.values()), 2),
            "due_next_7_days": {"count": due_count, "total": round(float(due_total), 2)},
        }
