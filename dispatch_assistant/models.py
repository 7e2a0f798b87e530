"""
Project: Roadside Dispatch Assistant
File: models.py

LLM wiring shared by the conversation core: a LangChain chat invoker used by
ChatSession and the JSON-mode field extractor, and an Outlines structured model
(ModelFactory) used for small schema-constrained calls such as name extraction.

Methods & Classes
- TokenDict: {"in": int, "out": int}
- class StructuredModel: __call__(prompt, output_type, **kwargs) -> {"parsed","raw","tokens","model"}
- class ModelFactory: get() -> StructuredModel (cached); reads OPENAI_API_KEY/OPENAI_MODEL.
- chatllm_invoke(messages, *, temperature, max_tokens, response_format, model_name) -> dict
- class NameSchema: {"name": str}

Dependencies
- External: outlines, openai, langchain_openai, pydantic
- Internal: dispatch_assistant.config
- Stdlib: os, json, functools.lru_cache, typing
"""

from __future__ import annotations

import os
import json
from functools import lru_cache
from typing import Any, Dict, List, Optional

import outlines
import openai
from pydantic import BaseModel, Field, ConfigDict
from langchain_openai import ChatOpenAI

from dispatch_assistant import config

TokenDict = Dict[str, int]  # must contain keys "in" and "out"


class StructuredModel:
    """
    Unified entry point for Outlines+OpenAI structured calls.

    Return shape (always the same):
        {
          "parsed": <Pydantic instance of output_type>,
          "raw": <str>,
          "tokens": {"in": int, "out": int},
          "model": <str>,
        }
    """

    def __init__(self, client: openai.OpenAI, model_name: str):
        self._client = client
        self._model_name = model_name
        self._fn = outlines.from_openai(client, model_name)

    def __call__(self, prompt: str, output_type: type[BaseModel], **kwargs) -> dict:
        resp = self._fn(prompt, output_type, **kwargs)

        if isinstance(resp, BaseModel):
            parsed = resp
            raw_text = parsed.model_dump_json(exclude_none=False)
        else:
            parsed = output_type.model_validate_json(resp)
            raw_text = resp

        return {"parsed": parsed, "raw": raw_text, "tokens": {"in": 0, "out": 0}, "model": self._model_name}


class ModelFactory:
    @staticmethod
    @lru_cache(maxsize=1)
    def get() -> StructuredModel:
        if not os.getenv("OPENAI_API_KEY"):
            raise RuntimeError("OPENAI_API_KEY is not set")
        client = openai.OpenAI()
        return StructuredModel(client, config.OPENAI_MODEL)


# --- Shared chat invocation for LangChain-based components -------------------
def chatllm_invoke(
    messages: List[Dict[str, str]],
    *,
    temperature: float = 0.7,
    max_tokens: Optional[int] = None,
    response_format: Optional[Dict[str, str]] = None,
    model_name: Optional[str] = None,
) -> Dict[str, Any]:
    mdl = model_name or config.OPENAI_MODEL
    llm = ChatOpenAI(
        model=mdl,
        temperature=temperature,
        max_tokens=max_tokens,
        **({"response_format": response_format} if response_format else {})
    )
    ai_msg = llm.invoke(messages)

    meta = getattr(ai_msg, "response_metadata", {}) or {}
    usage = meta.get("token_usage", {}) or {}
    tokens = {
        "in": int(usage.get("prompt_tokens", usage.get("input_tokens", 0)) or 0),
        "out": int(usage.get("completion_tokens", usage.get("output_tokens", 0)) or 0),
    }

    content = ai_msg.content if isinstance(ai_msg.content, str) else str(ai_msg.content)
    parsed: Optional[Any] = None
    if response_format and response_format.get("type") == "json_object":
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError:
            parsed = None

    return {
        "text": content,
        "parsed": parsed,
        "tokens": tokens,
        "model": mdl,
        "raw": ai_msg,
    }


# ---------- Strict schemas (LLM-facing) ----------
class NameSchema(BaseModel):
    name: str = Field(default="Driver", description="The name the driver wants to be called")

    model_config = ConfigDict(extra="forbid")
