"""
ScanPrompt — a question asked of every platform during one run.
"""
from sqlalchemy import Column, Integer, Text, DateTime, ForeignKey
from sqlalchemy.sql import func

from app.database import Base


class ScanPrompt(Base):
    __tablename__ = 'scan_prompts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Text, ForeignKey('scan_runs.id'), nullable=False, index=True)
    prompt_text = Column(Text, nullable=False)
    category = Column(Text, nullable=False, default='reputation')
    job_family = Column(Text, nullable=True)
    source = Column(Text, nullable=False, default='employer_research')  # frozen | employer_research | fallback
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
