"""
Frozen research sets — questions, competitors and role families pinned per
(organization, monitored domain) so repeat scans are comparable.

Rows are never deleted; unfreezing flips is_active.
"""
from sqlalchemy import Column, Integer, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.sql import func

from app.database import Base


class FrozenQuestion(Base):
    __tablename__ = 'hb_frozen_questions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Text, nullable=True, index=True)
    monitored_domain_id = Column(Integer, ForeignKey('monitored_domains.id'), nullable=True, index=True)
    prompt_text = Column(Text, nullable=False)
    category = Column(Text, nullable=False, default='reputation')
    job_family = Column(Text, nullable=True)
    source = Column(Text, nullable=False, default='employer_research')
    sort_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class FrozenCompetitor(Base):
    __tablename__ = 'hb_frozen_competitors'

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Text, nullable=True, index=True)
    monitored_domain_id = Column(Integer, ForeignKey('monitored_domains.id'), nullable=True, index=True)
    name = Column(Text, nullable=False)
    domain = Column(Text, nullable=True)
    reason = Column(Text, nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class FrozenRoleFamily(Base):
    __tablename__ = 'hb_frozen_role_families'

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Text, nullable=True, index=True)
    monitored_domain_id = Column(Integer, ForeignKey('monitored_domains.id'), nullable=True, index=True)
    family = Column(Text, nullable=False)
    display_name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    source = Column(Text, nullable=False, default='auto')  # auto | manual
    sort_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
