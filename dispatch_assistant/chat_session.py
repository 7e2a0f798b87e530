"""
Project: Roadside Dispatch Assistant
File: chat_session.py

Stateful chat wrapper: a persona prompt, a sampling temperature and the full,
ever-growing turn history. Every send goes over the whole history; nothing is
truncated. Model-call errors propagate to the caller.

Methods & Classes
- class ChatSession:
  - send_message(text) -> {"text", "tokens", "model"}
  - history -> list of {"role","content"} (system prompt first)
- create_chat_session(task, language_code, user_name=None, *, invoke=None) -> ChatSession

Dependencies
- Internal: dispatch_assistant.models (chatllm_invoke), prompts, task_router, config
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from dispatch_assistant import config
from dispatch_assistant.models import chatllm_invoke
from dispatch_assistant.prompts import build_persona_prompt
from dispatch_assistant.task_router import AssistantTask, task_requires_json

InvokeFn = Callable[..., Dict[str, Any]]


class ChatSession:
    def __init__(
        self,
        system_prompt: str,
        temperature: float = 0.7,
        *,
        invoke: Optional[InvokeFn] = None,
        model_name: Optional[str] = None,
    ) -> None:
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.model_name = model_name
        self._invoke = invoke or chatllm_invoke
        self._messages: List[Dict[str, str]] = [{"role": "system", "content": system_prompt}]

    @property
    def history(self) -> List[Dict[str, str]]:
        return list(self._messages)

    @property
    def turn_count(self) -> int:
        return sum(1 for m in self._messages if m["role"] == "user")

    def send_message(self, text: str) -> Dict[str, Any]:
        self._messages.append({"role": "user", "content": text})
        out = self._invoke(
            list(self._messages),
            temperature=self.temperature,
            model_name=self.model_name,
        )
        reply = (out.get("text") or "").strip()
        self._messages.append({"role": "assistant", "content": reply})
        return {"text": reply, "tokens": out.get("tokens", {"in": 0, "out": 0}), "model": out.get("model")}


def create_chat_session(
    task: AssistantTask,
    language_code: str,
    user_name: Optional[str] = None,
    *,
    invoke: Optional[InvokeFn] = None,
) -> ChatSession:
    """Persona + language + name substitutions applied once; JSON tasks run cooler."""
    prompt = build_persona_prompt(task, language_code, user_name)
    temperature = config.EXTRACTION_TEMPERATURE if task_requires_json(task) else config.CHAT_TEMPERATURE
    return ChatSession(prompt, temperature, invoke=invoke)
