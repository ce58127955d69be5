"""
Cost configuration loader — per-model token prices and per-request search prices.

YAML file with in-memory cache and hardcoded fallback if the file is missing.
"""
import logging
import os

import yaml

logger = logging.getLogger('pipeline.cost')


_cost_config = None


def _default_config():
    """Hardcoded fallback if YAML is missing."""
    return {
        'version': 'default',
        'models': {
            'openai/gpt-4o': {'input': 2.50, 'output': 10.00},
            'openai/gpt-4o-mini': {'input': 0.15, 'output': 0.60},
            'openai/o4-mini': {'input': 1.10, 'output': 4.40},
            'anthropic/claude-sonnet-4-20250514': {'input': 3.00, 'output': 15.00},
            'google/gemini-2.5-flash': {'input': 0.30, 'output': 2.50},
            'perplexity/sonar-pro': {'input': 3.00, 'output': 15.00},
            'perplexity/sonar': {'input': 1.00, 'output': 1.00},
        },
        'search': {
            'tavily/basic': 0.008,
            'tavily/advanced': 0.016,
        },
        'default_model': {'input': 3.00, 'output': 15.00},
    }


def load_cost_config() -> dict:
    """Load cost config from YAML, with in-memory cache and hardcoded fallback."""
    global _cost_config
    if _cost_config is not None:
        return _cost_config

    config_path = os.path.join(os.path.dirname(__file__), 'cost_config.yaml')
    try:
        with open(config_path, 'r') as f:
            _cost_config = yaml.safe_load(f)
        logger.info("Config loaded from YAML (version=%s)", _cost_config.get('version', '?'))
    except Exception as e:
        logger.warning("YAML config not found (%s), using defaults", e)
        _cost_config = _default_config()

    return _cost_config


def get_model_rates(model: str) -> dict:
    """USD per 1M tokens for 'provider/model', falling back to default_model."""
    cfg = load_cost_config()
    rates = cfg.get('models', {}).get(model)
    if rates is None:
        rates = cfg.get('default_model', {'input': 0.0, 'output': 0.0})
    return rates


def estimate_token_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    rates = get_model_rates(model)
    cost = (input_tokens * rates.get('input', 0.0) + output_tokens * rates.get('output', 0.0)) / 1_000_000
    return round(cost, 6)


def get_search_cost(kind: str) -> float:
    cfg = load_cost_config()
    return cfg.get('search', {}).get(kind, 0.0)


def reset_cache():
    """Reset the in-memory cache (useful for testing)."""
    global _cost_config
    _cost_config = None
