from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Generic, Iterator, List, Optional, Type, TypeVar

from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from ..config import INTENT_REASONING_EFFORT, INTENT_VERBOSITY
from ..llm import get_async_client
from ..utils import _log_debug

ModelT = TypeVar("ModelT", bound=BaseModel)

logger = logging.getLogger(__name__)

_FENCE_OPEN_RE = re.compile(r"^```[\w-]*\s*")
_FENCE_CLOSE_RE = re.compile(r"\s*```$")


@dataclass
class JsonReply(Generic[ModelT]):
  """One JSON-mode completion: the validated object (if any) and the raw text."""
  parsed: Optional[ModelT]
  raw_text: str
  model: str
  available: bool = True


def _reply_text(content: Any) -> str:
  """Message content as plain text; list content is joined part by part."""
  if isinstance(content, str):
    return content.strip()
  if not isinstance(content, list):
    return ""
  parts: List[str] = []
  for part in content:
    value = part.get("text") if isinstance(part, dict) else part
    if isinstance(value, str) and value.strip():
      parts.append(value.strip())
  return " ".join(parts)


def _json_candidates(raw_text: str) -> Iterator[str]:
  """The raw reply, then without a code fence, then its outermost object."""
  unfenced = _FENCE_CLOSE_RE.sub("", _FENCE_OPEN_RE.sub("", raw_text.strip()))
  yield raw_text
  yield unfenced
  first, last = unfenced.find("{"), unfenced.rfind("}")
  if 0 <= first < last:
    yield unfenced[first:last + 1]


def parse_json_reply(response_model: Type[ModelT], raw_text: str) -> Optional[ModelT]:
  tried = set()
  for candidate in _json_candidates(raw_text or ""):
    text = candidate.strip()
    if not text or text in tried:
      continue
    tried.add(text)
    try:
      return response_model.model_validate_json(text)
    except ValidationError:
      continue
  return None


def _messages(system_prompt: str,
              context_prompt: Optional[str],
              payload: Dict[str, Any]) -> List[Dict[str, str]]:
  instructions = [system_prompt.strip()]
  if context_prompt and context_prompt.strip():
    instructions.append(context_prompt.strip())
  system = "\n\n".join(instructions)
  # JSON mode rejects prompts that never mention JSON.
  if "json" not in system.lower():
    system += "\n\nAnswer with a single JSON object."
  return [
      {"role": "system", "content": system},
      {"role": "user", "content": json.dumps(payload, ensure_ascii=False, default=str)},
  ]


async def request_json_object(*,
                              model: str,
                              system_prompt: str,
                              payload: Dict[str, Any],
                              response_model: Type[ModelT],
                              context_prompt: Optional[str] = None,
                              max_completion_tokens: int = 2000,
                              client: Optional[AsyncOpenAI] = None) -> JsonReply[ModelT]:
  """Ask the model for one JSON object and validate it against ``response_model``.

  Without a configured client the reply is marked unavailable. Transport
  errors propagate to the caller.
  """
  if client is None:
    try:
      client = get_async_client()
    except RuntimeError:
      return JsonReply(parsed=None, raw_text="", model=model, available=False)

  completion = await client.chat.completions.create(
      model=model,
      messages=_messages(system_prompt, context_prompt, payload),
      response_format={"type": "json_object"},
      reasoning_effort=INTENT_REASONING_EFFORT,
      verbosity=INTENT_VERBOSITY,
      max_completion_tokens=max_completion_tokens,
  )
  raw_text = _reply_text(completion.choices[0].message.content)
  _log_debug(f"[INTENT LLM RAW] model={model}\n{raw_text or '(empty)'}\n[INTENT LLM RAW END]")
  parsed = parse_json_reply(response_model, raw_text)
  if parsed is None:
    logger.warning("reply from %s is not a usable JSON object", model)
  return JsonReply(parsed=parsed, raw_text=raw_text, model=model)
