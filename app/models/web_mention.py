"""
WebMention — a third-party page that talks about the employer.
"""
from sqlalchemy import (
    Column, Integer, Text, Float, DateTime, ForeignKey, UniqueConstraint,
)
from sqlalchemy.sql import func

from app.database import Base


class WebMention(Base):
    __tablename__ = 'hb_web_mentions'
    __table_args__ = (
        UniqueConstraint('run_id', 'url_hash', name='uq_web_mention_run_url'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Text, nullable=True, index=True)
    monitored_domain_id = Column(Integer, ForeignKey('monitored_domains.id'), nullable=True)
    run_id = Column(Text, ForeignKey('scan_runs.id'), nullable=False, index=True)
    report_id = Column(Integer, ForeignKey('reports.id'), nullable=True)
    url = Column(Text, nullable=False)
    url_hash = Column(Text, nullable=False)
    title = Column(Text, nullable=True)
    snippet = Column(Text, nullable=True)
    published_date = Column(Text, nullable=True)
    source_type = Column(Text, nullable=False, default='other')
    sentiment = Column(Text, nullable=True)
    sentiment_score = Column(Float, nullable=True)
    relevance_score = Column(Float, nullable=True)
    key_quote = Column(Text, nullable=True)
    search_query = Column(Text, nullable=True)
    domain_name = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
