"""
Generation collaborators: produce UI fragments and form markup from a spec and data.

GenerationClient talks to an OpenAI-compatible chat-completions endpoint with
aiohttp. The router only depends on the UIGenerator / FormGenerator shape,
``generate(spec, data, prior) -> str``, so any other implementation can be
injected.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import aiohttp

from .config import get_settings
from .schemas import FormSpec, UiSpec

logger = logging.getLogger(__name__)

UI_SYSTEM_PROMPT = (
    "You create interactive data visualizations and UIs for an ERP assistant. "
    "Use charts, tables, cards and other components as needed. Give every "
    "top-level section a stable id attribute."
)
FORM_SYSTEM_PROMPT = (
    "You create data-entry forms for ERP write operations. Prefill the given "
    "values and mark required fields."
)


class GenerationError(Exception):
    pass


def embed_data(prompt: str, data: Any) -> str:
    """Append ``data`` to the prompt as a fenced JSON block."""
    if data is None or data == {} or data == []:
        return prompt
    data_string = data if isinstance(data, str) else json.dumps(data, indent=2, default=str, ensure_ascii=False)
    return f"{prompt}\n\nHere is the data to use:\n```json\n{data_string}\n```"


class GenerationClient:
    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, model: Optional[str] = None,
                 timeout_s: Optional[float] = None, retries: int = 2, retry_delay_s: float = 1.0,
                 session: Optional[aiohttp.ClientSession] = None):
        cfg = get_settings()
        self.api_key = api_key if api_key is not None else cfg.GENERATION_API_KEY
        self.base_url = base_url or cfg.GENERATION_BASE_URL
        self.model = model or cfg.GENERATION_MODEL
        self.timeout_s = float(timeout_s or cfg.GENERATION_TIMEOUT_SECONDS)
        self.retries = retries
        self.retry_delay_s = retry_delay_s
        self.session = session

    async def __aenter__(self):
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()
            self.session = None

    async def complete(self, messages: List[Dict[str, str]], temperature: float = 0.7, max_tokens: int = 4096) -> str:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        timeout = aiohttp.ClientTimeout(total=self.timeout_s)
        last_error: Optional[str] = None
        for attempt in range(self.retries + 1):
            try:
                async with self.session.post(self.base_url, headers=headers, json=payload, timeout=timeout) as resp:
                    if resp.status == 200:
                        data = await resp.json()
                        content = (data.get("choices") or [{}])[0].get("message", {}).get("content")
                        if not content:
                            raise GenerationError("no content generated")
                        return content
                    err = await resp.text()
                    last_error = f"HTTP {resp.status}: {err[:200]}"
                    logger.error("generation error: %s", last_error)
                    if 400 <= resp.status < 500 and resp.status != 429:
                        break
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = str(e) or e.__class__.__name__
                logger.error("generation request failed: %s", last_error)
            if attempt < self.retries:
                await asyncio.sleep(self.retry_delay_s * (2 ** attempt))
        raise GenerationError(f"generation failed: {last_error}")


class UIGenerator(ABC):
    @abstractmethod
    async def generate(self, spec: UiSpec, data: Dict[str, Any], prior: Optional[str] = None) -> str:
        raise NotImplementedError


class FormGenerator(ABC):
    @abstractmethod
    async def generate(self, spec: FormSpec, data: Dict[str, Any], prior: Optional[str] = None) -> str:
        raise NotImplementedError


class LLMUIGenerator(UIGenerator):
    def __init__(self, client: GenerationClient):
        self.client = client

    @staticmethod
    def build_prompt(spec: UiSpec, prior: Optional[str]) -> str:
        lines = [f"Create a {spec.type} view: {spec.data_description}".rstrip(": ")]
        if spec.chart_type:
            lines.append(f"Chart type: {spec.chart_type}")
        if spec.group_by:
            lines.append(f"Group by: {spec.group_by}")
        if spec.sort_by:
            lines.append(f"Sort by: {spec.sort_by.field} {spec.sort_by.direction}")
        if spec.highlights:
            lines.append("Highlight: " + "; ".join(spec.highlights))
        if prior:
            lines.append(
                "A UI is already on screen. To change one of its sections wrap the new markup in "
                "REPLACE:<id> ... END_REPLACE; to add a section after an existing one use "
                "INSERT_AFTER:<id> ... END_INSERT."
            )
        return "\n".join(lines)

    async def generate(self, spec: UiSpec, data: Dict[str, Any], prior: Optional[str] = None) -> str:
        messages = [{"role": "system", "content": UI_SYSTEM_PROMPT}]
        if prior:
            messages.append({"role": "assistant", "content": prior})
        messages.append({"role": "user", "content": embed_data(self.build_prompt(spec, prior), data)})
        return await self.client.complete(messages)


class LLMFormGenerator(FormGenerator):
    def __init__(self, client: GenerationClient):
        self.client = client

    async def generate(self, spec: FormSpec, data: Dict[str, Any], prior: Optional[str] = None) -> str:
        prompt = f"Create a form for '{spec.action_type}': {spec.title}\n{spec.description}".strip()
        if spec.hidden_fields:
            prompt += "\nHidden fields: " + ", ".join(spec.hidden_fields)
        if spec.field_hints:
            prompt += "\nField hints:\n" + "\n".join(f"- {k}: {v}" for k, v in spec.field_hints.items())
        messages = [
            {"role": "system", "content": FORM_SYSTEM_PROMPT},
            {"role": "user", "content": embed_data(prompt, data)},
        ]
        return await self.client.complete(messages, temperature=0.2)
