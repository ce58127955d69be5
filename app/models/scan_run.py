"""
ScanRun — one employer-brand scan of a monitored domain.

Durable workflow state lives on this row: status/progress for polling,
completed_steps + step_outputs for resume(run_id).
"""
from sqlalchemy import Column, Text, Integer, DateTime, JSON, ForeignKey
from sqlalchemy.sql import func

from app.database import Base


class ScanRun(Base):
    __tablename__ = 'scan_runs'

    id = Column(Text, primary_key=True)
    organization_id = Column(Text, nullable=True, index=True)
    monitored_domain_id = Column(Integer, ForeignKey('monitored_domains.id'), nullable=True, index=True)
    domain = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default='crawling')
    progress = Column(Integer, nullable=False, default=0)
    attempts = Column(Integer, nullable=False, default=0)
    completed_steps = Column(JSON, default=list)
    step_outputs = Column(JSON, default=dict)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'monitored_domain_id': self.monitored_domain_id,
            'domain': self.domain,
            'status': self.status,
            'progress': self.progress,
            'attempts': self.attempts,
            'completed_steps': list(self.completed_steps or []),
            'error_message': self.error_message,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }
