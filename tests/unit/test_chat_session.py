# tests/unit/test_chat_session.py
import pytest

from dispatch_assistant import config
from dispatch_assistant.chat_session import ChatSession, create_chat_session
from dispatch_assistant.prompts import build_persona_prompt, language_name
from dispatch_assistant.task_router import AssistantTask


def test_history_accumulates(scripted):
    model = scripted(chat=["Where are you located?", "Which tire?"])
    chat = ChatSession("system prompt", invoke=model)
    assert chat.send_message("flat tire")["text"] == "Where are you located?"
    chat.send_message("I-80 mile 142")
    assert chat.turn_count == 2
    roles = [m["role"] for m in chat.history]
    assert roles == ["system", "user", "assistant", "user", "assistant"]
    # second call saw the full prior conversation
    assert [m["content"] for m in model.chat_calls[1]][:3] == ["system prompt", "flat tire", "Where are you located?"]


def test_model_error_propagates(scripted):
    chat = ChatSession("sys", invoke=scripted(chat=[ConnectionError("down")]))
    with pytest.raises(ConnectionError):
        chat.send_message("hello")


def test_factory_applies_persona_and_temperature(scripted):
    chat = create_chat_session(AssistantTask.SERVICE_REQUEST, "es-ES", "Lupe", invoke=scripted())
    assert chat.temperature == config.CHAT_TEMPERATURE
    assert "Lupe" in chat.system_prompt
    assert "{{USERNAME}}" not in chat.system_prompt
    assert "Español" in chat.system_prompt


def test_persona_defaults_to_driver():
    prompt = build_persona_prompt(AssistantTask.WEATHER, "en-US")
    assert "You are talking to Driver." in prompt


def test_language_name_fallback():
    assert language_name("fr-FR") == "Français"
    assert language_name("xx-YY") == "the user's language"
