"""
tests/conftest.py

Purpose
-------
Global pytest configuration for the entire test suite.

What this does
--------------
1) Loads `.env` values at session start so OPENAI_MODEL and friends match a
   developer's local setup (no test needs a real key).
2) Points the JSONL app logger at a per-session temp dir and resets it, so
   tests never append to the working tree's logs/.
3) Provides `ScriptedModel`, a fake `invoke` callable: chat calls pop the next
   scripted reply, extraction calls (response_format=json_object) pop the next
   scripted partial. An Exception instance in either script is raised instead.
4) Provides a `store` fixture (LocalStore rooted in tmp_path) and a default
   fleet `profile`.

File / module dependencies
--------------------------
- dispatch_assistant.app_logger (re-pointed here)
- fleet_agent.local_store.LocalStore
- dotenv, pytest
"""

import json
import os
from typing import Any, Dict, List

import dotenv
import pytest

from dispatch_assistant import app_logger
from dispatch_assistant.request_state import FleetProfile
from fleet_agent.local_store import LocalStore

dotenv.load_dotenv()


@pytest.fixture(scope="session", autouse=True)
def configure_log_root(tmp_path_factory):
    log_dir = tmp_path_factory.mktemp("logs")
    os.environ["LOG_DIR"] = str(log_dir)
    os.environ.setdefault("OPENAI_MODEL", "gpt-4o-mini")
    app_logger.reset()
    app_logger.configure(to_stdout=False)
    yield log_dir
    app_logger.reset()


class ScriptedModel:
    def __init__(self, chat: List[Any] | None = None, extractions: List[Any] | None = None):
        self.chat = list(chat or [])
        self.extractions = list(extractions or [])
        self.chat_calls: List[List[Dict[str, str]]] = []
        self.extract_calls: List[List[Dict[str, str]]] = []

    def __call__(self, messages, *, temperature=0.7, max_tokens=None, response_format=None, model_name=None):
        if response_format:
            self.extract_calls.append(messages)
            item = self.extractions.pop(0) if self.extractions else {}
            if isinstance(item, Exception):
                raise item
            text = item if isinstance(item, str) else json.dumps(item)
            return {"text": text, "parsed": None, "tokens": {"in": 10, "out": 5}, "model": "fake"}

        self.chat_calls.append(messages)
        item = self.chat.pop(0) if self.chat else "Okay."
        if isinstance(item, Exception):
            raise item
        return {"text": item, "parsed": None, "tokens": {"in": 10, "out": 5}, "model": "fake"}


@pytest.fixture()
def scripted():
    return ScriptedModel


@pytest.fixture()
def store(tmp_path) -> LocalStore:
    return LocalStore(tmp_path / "store")


@pytest.fixture()
def profile() -> FleetProfile:
    return FleetProfile(
        user_id="fleet-user-1",
        user_name="Marcus",
        contact_phone="555-0100",
        fleet_name="Blue Line Freight",
    )


# Complete tire partial used across flows
TIRE_PARTIAL = {
    "service_type": "TIRE",
    "urgency": "ERS",
    "location": {"current_location": "I-80 mile marker 142"},
    "vehicle": {"vehicle_type": "TRUCK"},
    "tire_info": {
        "requested_service": "REPLACE",
        "requested_tire": "295/75R22.5",
        "number_of_tires": 1,
        "tire_position": "left steer",
    },
}


@pytest.fixture()
def tire_partial() -> Dict[str, Any]:
    return json.loads(json.dumps(TIRE_PARTIAL))
