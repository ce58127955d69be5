"""
Provider bundle handed to the scan workflow.

Production builds one from env credentials; tests pass fakes with the same
two attributes.
"""
from dataclasses import dataclass

from app.config import ProviderConfig
from app.services.llm import LLMClient
from app.services.search import TavilySearch


@dataclass
class Providers:
    llm: LLMClient
    search: TavilySearch

    @classmethod
    def from_config(cls, config: ProviderConfig = None):
        config = config or ProviderConfig.from_env()
        return cls(llm=LLMClient(config), search=TavilySearch(config))
