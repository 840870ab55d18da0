"""
Clinical summary recomputation.

Every run derives each client's summary from scratch out of the lab and
prescription history and overwrites the stored row; nothing is carried over
from the previous summary.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from hivcare.config import (
    CD4_PANEL_CODE,
    HIV_VL_PANEL_CODE,
    VL_SUPPRESSED_BELOW,
    VL_UNDETECTABLE_BELOW,
)
from hivcare.constants import LookupType, MedicationCategory, ResultStatus, ViralLoadStatus
from hivcare.database import session_scope, utcnow
from hivcare.entities import Client, ClinicalSummary, LabPanel, LabResult, Lookup, Prescription
from hivcare.errors import TransactionFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LabObservation:
    """One result row of a Positive-status panel."""
    reported_at: Optional[datetime]
    value: Optional[float]


@dataclass(frozen=True)
class PrescriptionSnapshot:
    category: str
    regimen_id: Optional[str]
    is_active: bool
    start_date: Optional[datetime]
    end_date: Optional[datetime]


@dataclass(frozen=True)
class SummaryValues:
    baseline_cd4: Optional[float]
    baseline_cd4_date: Optional[datetime]
    first_viral_load_date: Optional[datetime]
    viral_load_status: ViralLoadStatus
    current_arv_regimen_id: Optional[str]
    current_prep_regimen_id: Optional[str]


def classify_viral_load(value: Optional[float]) -> ViralLoadStatus:
    """
    Bucket a viral load (copies/mL).

    HIGH_NOT_SUPPRESSED has no threshold of its own in current clinical
    policy, so every value at or above VL_SUPPRESSED_BELOW is DETECTABLE.
    """
    if value is None:
        return ViralLoadStatus.PENDING
    if value < VL_UNDETECTABLE_BELOW:
        return ViralLoadStatus.UNDETECTABLE
    if value < VL_SUPPRESSED_BELOW:
        return ViralLoadStatus.SUPPRESSED
    return ViralLoadStatus.DETECTABLE


def _dated_numeric(observations: Iterable[LabObservation]) -> List[LabObservation]:
    return [o for o in observations if o.reported_at is not None and o.value is not None]


def _current_regimen(prescriptions: Iterable[PrescriptionSnapshot], category: str,
                     now: datetime) -> Optional[str]:
    current = [
        p for p in prescriptions
        if p.category == category
        and p.is_active
        and (p.end_date is None or p.end_date > now)
    ]
    if not current:
        return None
    current.sort(key=lambda p: p.start_date or datetime.min, reverse=True)
    return current[0].regimen_id


def derive_summary(
    cd4_observations: Iterable[LabObservation],
    vl_observations: Iterable[LabObservation],
    prescriptions: Iterable[PrescriptionSnapshot],
    now: datetime,
) -> SummaryValues:
    """Pure derivation of summary values from Positive-status lab history."""
    prescriptions = list(prescriptions)
    vl_observations = list(vl_observations)

    cd4 = sorted(_dated_numeric(cd4_observations), key=lambda o: o.reported_at)
    baseline = cd4[0] if cd4 else None

    vl_dates = [o.reported_at for o in vl_observations if o.reported_at is not None]
    first_vl_date = min(vl_dates) if vl_dates else None

    vl = sorted(_dated_numeric(vl_observations), key=lambda o: o.reported_at)
    latest_vl = vl[-1].value if vl else None

    return SummaryValues(
        baseline_cd4=baseline.value if baseline else None,
        baseline_cd4_date=baseline.reported_at if baseline else None,
        first_viral_load_date=first_vl_date,
        viral_load_status=classify_viral_load(latest_vl),
        current_arv_regimen_id=_current_regimen(prescriptions, MedicationCategory.ARV.value, now),
        current_prep_regimen_id=_current_regimen(prescriptions, MedicationCategory.PREP.value, now),
    )


# ── Persistence ──────────────────────────────────────────────────────

def load_positive_observations(db: Session, client_id: str, panel_code: str) -> List[LabObservation]:
    """Results of the client's Positive panels of the given type, oldest first."""
    rows = db.execute(
        select(LabPanel.reported_at, LabResult.value_num)
        .join(Lookup, Lookup.id == LabPanel.panel_type_id)
        .outerjoin(LabResult, LabResult.panel_id == LabPanel.id)
        .where(
            LabPanel.client_id == client_id,
            LabPanel.status == ResultStatus.POSITIVE.value,
            Lookup.type == LookupType.LAB_PANEL.value,
            Lookup.code == panel_code,
        )
        .order_by(LabPanel.reported_at, LabResult.id)
    ).all()
    return [LabObservation(reported_at=r.reported_at, value=r.value_num) for r in rows]


def load_prescriptions(db: Session, client_id: str) -> List[PrescriptionSnapshot]:
    rows = db.scalars(
        select(Prescription)
        .where(Prescription.client_id == client_id)
        .order_by(Prescription.start_date, Prescription.id)
    ).all()
    return [
        PrescriptionSnapshot(
            category=p.category,
            regimen_id=p.regimen_id,
            is_active=bool(p.is_active),
            start_date=p.start_date,
            end_date=p.end_date,
        )
        for p in rows
    ]


def refresh_client_summary(db: Session, client_id: str, now: Optional[datetime] = None) -> ClinicalSummary:
    """Recompute one client's summary and overwrite the stored row."""
    now = now or utcnow()
    values = derive_summary(
        load_positive_observations(db, client_id, CD4_PANEL_CODE),
        load_positive_observations(db, client_id, HIV_VL_PANEL_CODE),
        load_prescriptions(db, client_id),
        now,
    )

    summary = db.get(ClinicalSummary, client_id)
    if summary is None:
        summary = ClinicalSummary(client_id=client_id)
        db.add(summary)

    summary.baseline_cd4 = values.baseline_cd4
    summary.baseline_cd4_date = values.baseline_cd4_date
    summary.first_viral_load_date = values.first_viral_load_date
    summary.viral_load_status = values.viral_load_status.value
    summary.current_arv_regimen_id = values.current_arv_regimen_id
    summary.current_prep_regimen_id = values.current_prep_regimen_id
    summary.updated_at = now
    db.flush()
    return summary


def refresh_all_summaries(db: Session, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    client_ids = db.scalars(select(Client.id).order_by(Client.id)).all()
    for client_id in client_ids:
        refresh_client_summary(db, client_id, now)
    return len(client_ids)


def run_summary_refresh(session_factory: sessionmaker, now: Optional[datetime] = None) -> int:
    """Refresh every client's summary in one transaction."""
    try:
        with session_scope(session_factory) as db:
            count = refresh_all_summaries(db, now)
    except Exception as e:
        logger.exception("Clinical summary refresh failed; transaction rolled back")
        raise TransactionFailure(f"Summary refresh failed: {e}") from e

    logger.info("Refreshed %d clinical summaries", count)
    return count
