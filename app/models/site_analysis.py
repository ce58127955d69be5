"""
SiteAnalysis — what the crawl + employer extraction learned about the site.
"""
from sqlalchemy import Column, Integer, Text, DateTime, JSON, ForeignKey
from sqlalchemy.sql import func

from app.database import Base


class SiteAnalysis(Base):
    __tablename__ = 'site_analyses'

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Text, ForeignKey('scan_runs.id'), nullable=False, unique=True)
    business_name = Column(Text, nullable=False)
    business_type = Column(Text, default='Employer')
    industry = Column(Text, nullable=True)
    location = Column(Text, nullable=True)
    roles = Column(JSON, default=list)
    culture_keywords = Column(JSON, default=list)
    detected_job_families = Column(JSON, default=list)
    raw_content = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
