"""
API cost ledger — one CostEntry per metered call.

Fire-and-forget: a ledger failure is logged and never reaches the caller.
"""
import logging

from app.database import get_session
from app.models.cost_entry import CostEntry
from app.pipeline.cost_config import estimate_token_cost, get_search_cost

logger = logging.getLogger('services.costs')


def track_cost(run_id, step, model, usage):
    """Record token usage for one LLM call. `usage` is an app.services.llm.Usage."""
    try:
        input_tokens = getattr(usage, 'input_tokens', 0) or 0
        output_tokens = getattr(usage, 'output_tokens', 0) or 0
        _insert(CostEntry(
            run_id=run_id,
            step=step,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            cost_usd=estimate_token_cost(model, input_tokens, output_tokens),
        ))
    except Exception:
        logger.error("Failed to track cost for run %s step %s", run_id, step, exc_info=True)


def track_search_cost(run_id, step, search_depth='advanced'):
    """Record one Tavily request."""
    kind = f'tavily/{search_depth}'
    try:
        _insert(CostEntry(
            run_id=run_id,
            step=step,
            model=kind,
            cost_usd=get_search_cost(kind),
        ))
    except Exception:
        logger.error("Failed to track search cost for run %s step %s", run_id, step, exc_info=True)


def get_run_cost(run_id) -> float:
    """Total recorded spend for a run."""
    session = get_session()
    try:
        rows = session.query(CostEntry.cost_usd).filter_by(run_id=run_id).all()
        return round(sum(r[0] or 0.0 for r in rows), 4)
    finally:
        session.close()


def _insert(entry):
    session = get_session()
    try:
        session.add(entry)
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
