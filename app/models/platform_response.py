"""
PlatformResponse — one platform's answer to one prompt, plus its analyses.

Sentiment columns stay NULL until the batch sentiment step fills them.
"""
from sqlalchemy import (
    Column, Integer, Text, Boolean, DateTime, JSON, ForeignKey, UniqueConstraint,
)
from sqlalchemy.sql import func

from app.database import Base


class PlatformResponse(Base):
    __tablename__ = 'llm_responses'
    __table_args__ = (
        UniqueConstraint('run_id', 'prompt_id', 'platform', name='uq_llm_response_run_prompt_platform'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Text, ForeignKey('scan_runs.id'), nullable=False, index=True)
    prompt_id = Column(Integer, ForeignKey('scan_prompts.id'), nullable=False, index=True)
    platform = Column(Text, nullable=False)
    response_text = Column(Text, default='')
    domain_mentioned = Column(Boolean, default=False)
    mention_position = Column(Integer, nullable=True)
    competitors_mentioned = Column(JSON, default=list)
    response_time_ms = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    search_enabled = Column(Boolean, default=True)
    sources = Column(JSON, default=list)
    job_family = Column(Text, nullable=True)
    tier = Column(Text, nullable=True)

    # researchability
    specificity_score = Column(Integer, nullable=True)
    confidence_score = Column(Integer, nullable=True)
    topics_mentioned = Column(JSON, default=list)

    # enhanced extraction
    positive_highlights = Column(JSON, default=list)
    negative_highlights = Column(JSON, default=list)
    red_flags = Column(JSON, default=list)
    green_flags = Column(JSON, default=list)
    recommendation_score = Column(Integer, nullable=True)
    recommendation_summary = Column(Text, nullable=True)
    hedging_level = Column(Text, nullable=True)
    source_quality = Column(Text, nullable=True)
    response_recency = Column(Text, nullable=True)

    # batch sentiment
    sentiment_score = Column(Integer, nullable=True)
    sentiment_category = Column(Text, nullable=True)
    sentiment_positive_phrases = Column(JSON, nullable=True)
    sentiment_negative_phrases = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
