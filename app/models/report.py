"""
Report — the shareable result of a completed scan.

visibility_score holds the desirability (overall) score. Enrichment steps fill
competitor_analysis, strategic_summary, role_action_plans and mention_stats
after the run is already complete, so readers must treat them as optional.
"""
from sqlalchemy import Column, Integer, Text, DateTime, JSON, ForeignKey
from sqlalchemy.sql import func

from app.database import Base


class Report(Base):
    __tablename__ = 'reports'

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Text, ForeignKey('scan_runs.id'), nullable=False, unique=True)
    url_token = Column(Text, nullable=False, unique=True)
    visibility_score = Column(Integer, nullable=False)
    platform_scores = Column(JSON, default=dict)
    top_competitors = Column(JSON, default=list)
    summary = Column(Text, default='')
    expires_at = Column(DateTime(timezone=True), nullable=False)
    researchability_score = Column(Integer, nullable=True)
    topics_covered = Column(JSON, default=list)
    topics_missing = Column(JSON, default=list)
    topics_with_confidence = Column(JSON, default=list)
    differentiation_score = Column(Integer, nullable=True)
    unique_attributes = Column(JSON, default=list)
    generic_phrases = Column(JSON, default=list)
    competitor_analysis = Column(JSON, nullable=True)
    strategic_summary = Column(JSON, nullable=True)
    role_action_plans = Column(JSON, nullable=True)
    mention_stats = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def to_dict(self):
        return {
            'id': self.id,
            'run_id': self.run_id,
            'url_token': self.url_token,
            'visibility_score': self.visibility_score,
            'platform_scores': self.platform_scores or {},
            'top_competitors': self.top_competitors or [],
            'summary': self.summary or '',
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'researchability_score': self.researchability_score,
            'topics_covered': self.topics_covered or [],
            'topics_missing': self.topics_missing or [],
            'topics_with_confidence': self.topics_with_confidence or [],
            'differentiation_score': self.differentiation_score,
            'unique_attributes': self.unique_attributes or [],
            'generic_phrases': self.generic_phrases or [],
            'competitor_analysis': self.competitor_analysis,
            'strategic_summary': self.strategic_summary,
            'role_action_plans': self.role_action_plans,
            'mention_stats': self.mention_stats,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
