"""
Score history — one row per report for trend charts, plus per-employer
competitor snapshots ranked within that report.
"""
from sqlalchemy import (
    Column, Integer, Text, Float, Boolean, DateTime, JSON, ForeignKey, UniqueConstraint,
)
from sqlalchemy.sql import func

from app.database import Base


class ScoreHistory(Base):
    __tablename__ = 'hb_score_history'

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Text, nullable=True, index=True)
    monitored_domain_id = Column(Integer, ForeignKey('monitored_domains.id'), nullable=True, index=True)
    report_id = Column(Integer, ForeignKey('reports.id'), nullable=False, unique=True)
    desirability_score = Column(Integer, nullable=True)
    awareness_score = Column(Integer, nullable=True)
    differentiation_score = Column(Integer, nullable=True)
    platform_scores = Column(JSON, default=dict)
    role_family_scores = Column(JSON, nullable=True)
    competitor_rank = Column(Integer, nullable=True)
    competitor_count = Column(Integer, nullable=True)
    dimension_scores = Column(JSON, nullable=True)
    scan_date = Column(DateTime(timezone=True), server_default=func.now())


class CompetitorHistory(Base):
    __tablename__ = 'hb_competitor_history'
    __table_args__ = (
        UniqueConstraint('report_id', 'employer_name', name='uq_competitor_history_report_employer'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Text, nullable=True, index=True)
    monitored_domain_id = Column(Integer, ForeignKey('monitored_domains.id'), nullable=True, index=True)
    report_id = Column(Integer, ForeignKey('reports.id'), nullable=False, index=True)
    employer_name = Column(Text, nullable=False)
    employer_domain = Column(Text, nullable=True)
    is_target = Column(Boolean, nullable=False, default=False)
    composite_score = Column(Float, nullable=True)
    differentiation_score = Column(Integer, nullable=True)
    dimension_scores = Column(JSON, default=dict)
    rank_by_composite = Column(Integer, nullable=True)
    rank_by_differentiation = Column(Integer, nullable=True)
    scan_date = Column(DateTime(timezone=True), server_default=func.now())
