"""
Relational tables for patients and their clinical artifacts.

Every artifact row references ``patients.patient_id`` (the external
identifier), not the surrogate key, so records of any kind can be joined by
the identifier clinicians actually use. Artifact tables other than
``alerts`` are append-only logs.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from oncoassist.models.models import utcnow


class Base(DeclarativeBase):
    """Base class for all tables."""
    pass


def _patient_fk() -> Mapped[str]:
    return mapped_column(
        String(64),
        ForeignKey("patients.patient_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


class Patient(Base):
    """Canonical patient identity and static attributes."""
    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    patient_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    age: Mapped[int] = mapped_column(Integer, nullable=False)
    gender: Mapped[str] = mapped_column(String(32), nullable=False)
    cancer_type: Mapped[str] = mapped_column(String(100), nullable=False)
    stage: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    treatment_history: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    # Relationships
    scans: Mapped[list["Scan"]] = relationship(back_populates="patient", cascade="all, delete-orphan", passive_deletes=True)
    diagnoses: Mapped[list["Diagnosis"]] = relationship(back_populates="patient", cascade="all, delete-orphan", passive_deletes=True)
    prognoses: Mapped[list["Prognosis"]] = relationship(back_populates="patient", cascade="all, delete-orphan", passive_deletes=True)
    radiation_plans: Mapped[list["RadiationPlan"]] = relationship(back_populates="patient", cascade="all, delete-orphan", passive_deletes=True)
    biomarkers: Mapped[list["Biomarker"]] = relationship(back_populates="patient", cascade="all, delete-orphan", passive_deletes=True)
    alerts: Mapped[list["Alert"]] = relationship(back_populates="patient", cascade="all, delete-orphan", passive_deletes=True)


class Scan(Base):
    """Imaging study with tumour measurements."""
    __tablename__ = "scans"
    __table_args__ = (Index("ix_scans_patient_uploaded", "patient_id", "uploaded_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    patient_id: Mapped[str] = _patient_fk()
    scan_type: Mapped[str] = mapped_column(String(32), nullable=False)
    file_url: Mapped[str] = mapped_column(Text, nullable=False)
    tumor_detected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tumor_location: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    tumor_size: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    malignancy_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    growth_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    patient: Mapped["Patient"] = relationship(back_populates="scans")


class Diagnosis(Base):
    """AI-assisted diagnosis, one row per generation."""
    __tablename__ = "diagnoses"
    __table_args__ = (Index("ix_diagnoses_patient_updated", "patient_id", "updated_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    patient_id: Mapped[str] = _patient_fk()
    primary_diagnosis: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    alternative_diagnoses: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    patient: Mapped["Patient"] = relationship(back_populates="diagnoses")


class Prognosis(Base):
    """Survival prognosis with treatment scenarios."""
    __tablename__ = "prognoses"
    __table_args__ = (Index("ix_prognoses_patient_updated", "patient_id", "updated_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    patient_id: Mapped[str] = _patient_fk()
    survival_1yr: Mapped[float] = mapped_column(Float, nullable=False)
    survival_3yr: Mapped[float] = mapped_column(Float, nullable=False)
    survival_5yr: Mapped[float] = mapped_column(Float, nullable=False)
    treatment_scenarios: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    patient: Mapped["Patient"] = relationship(back_populates="prognoses")


class RadiationPlan(Base):
    """Optimized radiation therapy plan."""
    __tablename__ = "radiation_plans"
    __table_args__ = (Index("ix_radiation_plans_patient_updated", "patient_id", "updated_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    patient_id: Mapped[str] = _patient_fk()
    beam_angles: Mapped[int] = mapped_column(Integer, nullable=False)
    total_dose: Mapped[float] = mapped_column(Float, nullable=False)
    fractions: Mapped[int] = mapped_column(Integer, nullable=False)
    tumor_coverage: Mapped[float] = mapped_column(Float, nullable=False)
    healthy_tissue_spared: Mapped[float] = mapped_column(Float, nullable=False)
    organs_at_risk: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    optimization_method: Mapped[str] = mapped_column(String(200), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    patient: Mapped["Patient"] = relationship(back_populates="radiation_plans")


class Biomarker(Base):
    """Lab biomarker reading; many per type over time."""
    __tablename__ = "biomarkers"
    __table_args__ = (Index("ix_biomarkers_patient_type_recorded", "patient_id", "type", "recorded_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    patient_id: Mapped[str] = _patient_fk()
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    value: Mapped[float] = mapped_column(Float, nullable=False)
    unit: Mapped[str] = mapped_column(String(32), nullable=False)
    normal_range_low: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    normal_range_high: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    trend: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    patient: Mapped["Patient"] = relationship(back_populates="biomarkers")


class Alert(Base):
    """Monitoring alert. ``acknowledged`` is the only column updated in place."""
    __tablename__ = "alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    patient_id: Mapped[str] = _patient_fk()
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    patient: Mapped["Patient"] = relationship(back_populates="alerts")
