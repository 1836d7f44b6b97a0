from __future__ import annotations

import secrets
import threading
import time
from typing import Callable, Dict, Optional

from ..config import CONVERSATION_TTL_SECONDS
from .schemas import ConversationState, Entities, Operation


def _new_conversation_id() -> str:
  return f"conv_{secrets.token_urlsafe(9)}"


class ConversationStore:
  """Pending conversations keyed by id.

  Lives in process memory only: a restart drops every open conversation and
  nothing is shared between worker processes. Entries expire ``ttl_seconds``
  after their last update and are evicted on every ``create`` and ``save``, so
  abandoned conversations do not accumulate. Callers always get copies, so a
  state is changed only through ``save``.
  """

  def __init__(self,
               ttl_seconds: float = CONVERSATION_TTL_SECONDS,
               id_factory: Optional[Callable[[], str]] = None,
               clock: Optional[Callable[[], float]] = None):
    self._ttl = ttl_seconds
    self._new_id = id_factory or _new_conversation_id
    self._clock = clock or time.monotonic
    self._items: Dict[str, ConversationState] = {}
    self._lock = threading.Lock()

  def __len__(self) -> int:
    with self._lock:
      return len(self._items)

  def _expired(self, state: ConversationState, now: float) -> bool:
    return self._ttl > 0 and now - state.updated_at > self._ttl

  def create(self,
             original_query: str,
             operation: Operation,
             entities: Optional[Entities] = None) -> ConversationState:
    self.purge_expired()
    now = self._clock()
    state = ConversationState(id=self._new_id(),
                              original_query=original_query,
                              operation=operation,
                              pending_entities=entities or Entities(),
                              created_at=now,
                              updated_at=now)
    with self._lock:
      self._items[state.id] = state
    return state.model_copy(deep=True)

  def get(self, conversation_id: Optional[str]) -> Optional[ConversationState]:
    if not conversation_id:
      return None
    now = self._clock()
    with self._lock:
      stored = self._items.get(conversation_id)
      if stored is None:
        return None
      if self._expired(stored, now):
        self._items.pop(conversation_id, None)
        return None
      return stored.model_copy(deep=True)

  def save(self, state: ConversationState) -> ConversationState:
    self.purge_expired()
    stored = state.model_copy(deep=True)
    stored.updated_at = self._clock()
    with self._lock:
      self._items[stored.id] = stored
    return stored.model_copy(deep=True)

  def delete(self, conversation_id: Optional[str]) -> bool:
    if not conversation_id:
      return False
    with self._lock:
      return self._items.pop(conversation_id, None) is not None

  def purge_expired(self) -> int:
    now = self._clock()
    with self._lock:
      expired = [key for key, value in self._items.items() if self._expired(value, now)]
      for key in expired:
        self._items.pop(key, None)
    return len(expired)
