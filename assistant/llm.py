"""Chat-completion collaborator for the router's model fallback."""
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Protocol

from openai import AsyncOpenAI

from .config import Settings

logger = logging.getLogger(__name__)

NO_TOOL = "none"

ROUTER_PROMPT = """You are a command router for a local assistant. Map the user's request to exactly one tool and respond in JSON.
Today's date: {today}

Available tools:
{tool_list}

Response format: always valid JSON, one object:
  {{"tool": "<tool_name>", "args": {{...}}, "confidence": <0.0-1.0>}}

Rules:
- Use only tools from the list above and only their listed params.
- Integer params must be JSON numbers, booleans must be true/false.
- If no tool fits the request, respond {{"tool": "none", "args": {{}}, "confidence": 0}}.
- Never invent file paths or commands the user did not mention.

Examples:
- "jot down that the wifi password is on the fridge" → {{"tool": "remember", "args": {{"text": "the wifi password is on the fridge"}}, "confidence": 0.9}}
- "what's left on my todo list" → {{"tool": "task_list", "args": {{"status": "open"}}, "confidence": 0.9}}
- "show me what's in notes.txt" → {{"tool": "read_file", "args": {{"path": "notes.txt"}}, "confidence": 0.85}}
- "tell me a joke" → {{"tool": "none", "args": {{}}, "confidence": 0}}

IMPORTANT: Respond with JSON only. No markdown, no code blocks."""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class ChatModel(Protocol):
    provider: str
    model: str

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        ...


class OpenAIChatModel:
    """OpenAI-compatible chat completions in JSON mode."""

    provider = "openai"

    def __init__(self, api_key: str, base_url: str, model: str):
        self.model = model
        self.base_url = base_url
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["OpenAIChatModel"]:
        if not settings.openai_api_key:
            logger.info("OPENAI_API_KEY not set, model fallback disabled")
            return None
        logger.info(f"Router model: {settings.router_model} @ {settings.openai_base_url} (key={settings.masked_key()})")
        return cls(settings.openai_api_key, settings.openai_base_url, settings.router_model)

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=messages,
            response_format={"type": "json_object"},
            temperature=0,
        )
        return (response.choices[0].message.content or "").strip()


def build_messages(text: str, tool_list: str, today: Optional[date] = None) -> List[Dict[str, str]]:
    today = today or date.today()
    system_prompt = ROUTER_PROMPT.format(tool_list=tool_list, today=today.isoformat())
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": text},
    ]


def prompt_fingerprint(messages: List[Dict[str, str]]) -> str:
    return "\n".join(f"{m['role']}:{m['content']}" for m in messages)


@dataclass
class ModelChoice:
    tool: str
    args: Dict[str, Any] = field(default_factory=dict)
    confidence: float = 1.0


def parse_tool_response(raw: str) -> Optional[ModelChoice]:
    """Parse the model's JSON reply. Returns None when the shape is wrong."""
    if not raw:
        return None
    cleaned = _FENCE_RE.sub("", raw.strip())
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.warning(f"Router model returned non-JSON: {raw[:200]}")
        return None
    if not isinstance(data, dict):
        return None
    tool = data.get("tool")
    args = data.get("args", {})
    if args is None:
        args = {}
    if not isinstance(tool, str) or not tool.strip() or not isinstance(args, dict):
        logger.warning(f"Router model reply has wrong shape: {cleaned[:200]}")
        return None
    confidence = data.get("confidence", 1.0)
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = 1.0
    return ModelChoice(tool=tool.strip(), args=args, confidence=max(0.0, min(1.0, float(confidence))))
