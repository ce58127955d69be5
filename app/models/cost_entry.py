"""
CostEntry — one metered API call attributed to a scan step.
"""
from sqlalchemy import Column, Integer, Text, Float, DateTime
from sqlalchemy.sql import func

from app.database import Base


class CostEntry(Base):
    __tablename__ = 'api_costs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Text, nullable=True, index=True)
    step = Column(Text, nullable=False)
    model = Column(Text, nullable=False)
    input_tokens = Column(Integer, default=0)
    output_tokens = Column(Integer, default=0)
    total_tokens = Column(Integer, default=0)
    cost_usd = Column(Float, default=0.0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
