"""
LLM provider gateway — OpenAI, Anthropic, Gemini and Perplexity behind one client.

Two call shapes:
  generate_text(provider, model, prompt, ...)            → LLMResult
  generate_object(provider, model, schema, prompt, ...)  → (pydantic instance, LLMResult)

Plus the vendor-native search-grounded calls used by the platform adapters
(search_openai, search_gemini, perplexity_chat).

Every call goes through the vendor's circuit breaker. Passing step= records a
CostEntry for the call (fire-and-forget). SDK clients are created lazily from
ProviderConfig so a missing key only fails the calls that need it.
"""
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple, Type

import requests
from pydantic import BaseModel, ValidationError

from app.config import ProviderConfig
from app.errors import ProviderError, StructuredOutputError
from app.services.circuit_breaker import get_breaker
from app.services.costs import track_cost

logger = logging.getLogger('services.llm')

PERPLEXITY_RETRYABLE_STATUS = (429, 500, 502, 503, 504)
PERPLEXITY_BACKOFF_SECONDS = (2, 4)


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class LLMResult:
    """Text plus metadata from one vendor call."""
    text: str
    model: str
    usage: Usage = field(default_factory=Usage)
    sources: List[Dict[str, Any]] = field(default_factory=list)
    raw: Any = field(default=None, repr=False)


class LLMClient:
    """Vendor gateway. One instance per scan workflow (or shared — it is thread-safe)."""

    def __init__(self, config: ProviderConfig = None):
        self.config = config or ProviderConfig.from_env()
        self._openai = None
        self._anthropic = None
        self._genai = None

    # ── SDK clients ───────────────────────────────────────────────────

    @property
    def openai(self):
        if self._openai is None:
            if not self.config.openai_api_key:
                raise ProviderError('openai', 'OPENAI_API_KEY not set')
            from openai import OpenAI
            self._openai = OpenAI(api_key=self.config.openai_api_key)
        return self._openai

    @property
    def anthropic(self):
        if self._anthropic is None:
            if not self.config.anthropic_api_key:
                raise ProviderError('anthropic', 'ANTHROPIC_API_KEY not set')
            from anthropic import Anthropic
            self._anthropic = Anthropic(api_key=self.config.anthropic_api_key)
        return self._anthropic

    @property
    def genai(self):
        if self._genai is None:
            if not self.config.google_api_key:
                raise ProviderError('google', 'GOOGLE_AI_API_KEY not set')
            from google import genai
            self._genai = genai.Client(api_key=self.config.google_api_key)
        return self._genai

    # ── Plain text ────────────────────────────────────────────────────

    def generate_text(self, provider: str, model: str, prompt: str, system: str = None,
                      max_tokens: int = 1000, temperature: float = None,
                      run_id: str = None, step: str = None) -> LLMResult:
        if provider == 'openai':
            result = self._openai_chat(model, prompt, system, max_tokens, temperature)
        elif provider == 'anthropic':
            result = self._anthropic_message(model, prompt, system, max_tokens, temperature)
        elif provider == 'google':
            result = self._gemini_generate(model, prompt, system, max_tokens, temperature)
        elif provider == 'perplexity':
            result = self.perplexity_chat(model, prompt, system, max_tokens=max_tokens)
        else:
            raise ValueError(f"Unknown LLM provider '{provider}'")

        if step:
            track_cost(run_id, step, f'{provider}/{model}', result.usage)
        return result

    def _openai_chat(self, model, prompt, system, max_tokens, temperature, **extra):
        messages = []
        if system:
            messages.append({'role': 'system', 'content': system})
        messages.append({'role': 'user', 'content': prompt})
        kwargs = dict(model=model, messages=messages, max_tokens=max_tokens, **extra)
        if temperature is not None:
            kwargs['temperature'] = temperature

        response = get_breaker('openai').call(self.openai.chat.completions.create, **kwargs)
        usage = getattr(response, 'usage', None)
        return LLMResult(
            text=response.choices[0].message.content or '',
            model=model,
            usage=Usage(
                input_tokens=getattr(usage, 'prompt_tokens', 0) or 0,
                output_tokens=getattr(usage, 'completion_tokens', 0) or 0,
            ),
        )

    def _anthropic_message(self, model, prompt, system, max_tokens, temperature, **extra):
        kwargs = dict(
            model=model,
            max_tokens=max_tokens,
            messages=[{'role': 'user', 'content': prompt}],
            **extra,
        )
        if system:
            kwargs['system'] = system
        if temperature is not None:
            kwargs['temperature'] = temperature

        message = get_breaker('anthropic').call(self.anthropic.messages.create, **kwargs)
        text = ''.join(block.text for block in message.content if getattr(block, 'type', '') == 'text')
        return LLMResult(
            text=text,
            model=model,
            usage=Usage(
                input_tokens=getattr(message.usage, 'input_tokens', 0) or 0,
                output_tokens=getattr(message.usage, 'output_tokens', 0) or 0,
            ),
            raw=message,
        )

    def _gemini_generate(self, model, prompt, system, max_tokens, temperature, **config_extra):
        from google.genai import types

        config_kwargs = dict(config_extra)
        if system:
            config_kwargs['system_instruction'] = system
        if max_tokens:
            config_kwargs['max_output_tokens'] = max_tokens
        if temperature is not None:
            config_kwargs['temperature'] = temperature

        response = get_breaker('google').call(
            self.genai.models.generate_content,
            model=model,
            contents=prompt,
            config=types.GenerateContentConfig(**config_kwargs),
        )
        meta = getattr(response, 'usage_metadata', None)
        return LLMResult(
            text=response.text or '',
            model=model,
            usage=Usage(
                input_tokens=getattr(meta, 'prompt_token_count', 0) or 0,
                output_tokens=getattr(meta, 'candidates_token_count', 0) or 0,
            ),
            raw=response,
        )

    # ── Structured output ─────────────────────────────────────────────

    def generate_object(self, provider: str, model: str, schema: Type[BaseModel], prompt: str,
                        system: str = None, max_tokens: int = 2000, temperature: float = None,
                        run_id: str = None, step: str = None) -> Tuple[BaseModel, LLMResult]:
        """
        Ask for output matching a pydantic schema.

        Anthropic uses a forced tool call, OpenAI uses JSON mode, Gemini uses
        response_schema. Perplexity has no structured mode and raises ProviderError.
        A payload that fails validation raises StructuredOutputError.
        """
        json_schema = schema.model_json_schema()

        if provider == 'anthropic':
            tool = {
                'name': 'record_result',
                'description': f'Record the {schema.__name__} result.',
                'input_schema': json_schema,
            }
            result = self._anthropic_message(
                model, prompt, system, max_tokens, temperature,
                tools=[tool],
                tool_choice={'type': 'tool', 'name': 'record_result'},
            )
            payload = None
            for block in result.raw.content:
                if getattr(block, 'type', '') == 'tool_use':
                    payload = block.input
                    break
            if payload is None:
                raise StructuredOutputError('anthropic', 'no tool_use block in response')

        elif provider == 'openai':
            schema_hint = (
                'Respond only with a JSON object matching this JSON schema:\n'
                f'{json.dumps(json_schema)}'
            )
            result = self._openai_chat(
                model, prompt, f'{system}\n\n{schema_hint}' if system else schema_hint,
                max_tokens, temperature,
                response_format={'type': 'json_object'},
            )
            payload = _loads(result.text, 'openai')

        elif provider == 'google':
            result = self._gemini_generate(
                model, prompt, system, max_tokens, temperature,
                response_mime_type='application/json',
                response_schema=schema,
            )
            payload = _loads(result.text, 'google')

        else:
            raise ProviderError(provider, 'structured output not supported')

        if step:
            track_cost(run_id, step, f'{provider}/{model}', result.usage)

        try:
            return schema.model_validate(payload), result
        except ValidationError as e:
            raise StructuredOutputError(provider, f'{schema.__name__} validation failed: {e}') from e

    # ── Search-grounded vendor calls ──────────────────────────────────

    def search_openai(self, model: str, prompt: str, system: str = None,
                      user_location: Dict[str, str] = None, max_output_tokens: int = 4000,
                      run_id: str = None, step: str = None) -> LLMResult:
        """OpenAI Responses API with the web_search tool; sources from url_citation annotations."""
        tool = {'type': 'web_search', 'search_context_size': 'high'}
        if user_location:
            tool['user_location'] = {'type': 'approximate', **user_location}

        kwargs = dict(model=model, input=prompt, tools=[tool], max_output_tokens=max_output_tokens)
        if system:
            kwargs['instructions'] = system

        response = get_breaker('openai').call(self.openai.responses.create, **kwargs)

        sources = []
        for item in getattr(response, 'output', None) or []:
            for chunk in getattr(item, 'content', None) or []:
                for annotation in getattr(chunk, 'annotations', None) or []:
                    if getattr(annotation, 'type', '') == 'url_citation' and getattr(annotation, 'url', None):
                        sources.append({'url': annotation.url, 'title': getattr(annotation, 'title', '') or ''})

        usage = getattr(response, 'usage', None)
        result = LLMResult(
            text=getattr(response, 'output_text', '') or '',
            model=model,
            usage=Usage(
                input_tokens=getattr(usage, 'input_tokens', 0) or 0,
                output_tokens=getattr(usage, 'output_tokens', 0) or 0,
            ),
            sources=sources,
        )
        if step:
            track_cost(run_id, step, f'openai/{model}', result.usage)
        return result

    def search_gemini(self, model: str, prompt: str, system: str = None,
                      run_id: str = None, step: str = None) -> LLMResult:
        """Gemini with google_search grounding; sources from grounding chunks."""
        from google.genai import types

        result = self._gemini_generate(
            model, prompt, system, None, None,
            tools=[types.Tool(google_search=types.GoogleSearch())],
        )

        sources = []
        candidates = getattr(result.raw, 'candidates', None) or []
        if candidates:
            grounding = getattr(candidates[0], 'grounding_metadata', None)
            for chunk in getattr(grounding, 'grounding_chunks', None) or []:
                web = getattr(chunk, 'web', None)
                if web and getattr(web, 'uri', None):
                    sources.append({'url': web.uri, 'title': getattr(web, 'title', '') or ''})
        result.sources = sources
        if step:
            track_cost(run_id, step, f'google/{model}', result.usage)
        return result

    def perplexity_chat(self, model: str, prompt: str, system: str = None,
                        max_tokens: int = 1500, timeout: int = 60,
                        run_id: str = None, step: str = None) -> LLMResult:
        """Perplexity chat/completions over HTTPS; citations become sources."""
        if not self.config.perplexity_api_key:
            raise ProviderError('perplexity', 'PERPLEXITY_API_KEY not set')

        messages = []
        if system:
            messages.append({'role': 'system', 'content': system})
        messages.append({'role': 'user', 'content': prompt})
        payload = {
            'model': model,
            'messages': messages,
            'max_tokens': max_tokens,
            'return_citations': True,
        }

        data = get_breaker('perplexity').call(self._perplexity_post, payload, timeout)

        citations = data.get('citations') or []
        usage = data.get('usage') or {}
        result = LLMResult(
            text=data['choices'][0]['message']['content'] or '',
            model=model,
            usage=Usage(
                input_tokens=usage.get('prompt_tokens', 0) or 0,
                output_tokens=usage.get('completion_tokens', 0) or 0,
            ),
            sources=[{'url': url, 'title': ''} for url in citations if isinstance(url, str)],
        )
        if step:
            track_cost(run_id, step, f'perplexity/{model}', result.usage)
        return result

    def _perplexity_post(self, payload, timeout):
        """POST with up to two retries on transient failures (2s, 4s backoff)."""
        url = f'{self.config.perplexity_api_url}/chat/completions'
        headers = {
            'Authorization': f'Bearer {self.config.perplexity_api_key}',
            'Content-Type': 'application/json',
        }
        attempts = len(PERPLEXITY_BACKOFF_SECONDS) + 1
        for attempt in range(attempts):
            try:
                resp = requests.post(url, headers=headers, json=payload, timeout=timeout)
                if resp.status_code in PERPLEXITY_RETRYABLE_STATUS and attempt < attempts - 1:
                    logger.warning("Perplexity HTTP %d, retrying (%d/%d)",
                                   resp.status_code, attempt + 1, attempts - 1)
                    time.sleep(PERPLEXITY_BACKOFF_SECONDS[attempt])
                    continue
                resp.raise_for_status()
                return resp.json()
            except (requests.Timeout, requests.ConnectionError) as e:
                if attempt >= attempts - 1:
                    raise
                logger.warning("Perplexity transient error, retrying (%d/%d): %s",
                               attempt + 1, attempts - 1, e)
                time.sleep(PERPLEXITY_BACKOFF_SECONDS[attempt])


def _loads(text: str, provider: str):
    try:
        return json.loads(text)
    except (TypeError, ValueError) as e:
        raise StructuredOutputError(provider, f'invalid JSON: {e}') from e
