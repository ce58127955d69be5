"""
MonitoredDomain — an employer (primary) or researched competitor tracked per organization.
"""
from sqlalchemy import Column, Integer, Text, Boolean, DateTime, UniqueConstraint
from sqlalchemy.sql import func

from app.database import Base


class MonitoredDomain(Base):
    __tablename__ = 'monitored_domains'
    __table_args__ = (
        UniqueConstraint('organization_id', 'domain', name='uq_monitored_domain_org_domain'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Text, nullable=True, index=True)
    domain = Column(Text, nullable=False)
    company_name = Column(Text, nullable=True)
    is_primary = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
