"""Tests for the external planner client."""
from __future__ import annotations

import json
import os
from dataclasses import replace
from unittest.mock import Mock, patch

import openai
import pytest

from chaos_director.config import Settings
from chaos_director.planner_client import (
    PlannerClient,
    PlannerConfig,
    PlannerError,
    PlannerNotEnabledError,
    PlannerResponseError,
    build_messages,
    parse_plan_content,
)


def _reply(content):
    response = Mock()
    response.choices = [Mock(message=Mock(content=content))]
    return response


def test_config_from_env():
    """Test loading planner configuration from settings and environment."""
    settings = replace(Settings.from_dict({}), planner_api_key_env="CHAOS_TEST_KEY")
    with patch.dict(os.environ, {
        "CHAOS_TEST_KEY": "sk-test",
        "CHAOS_PLANNER_BASE_URL": "http://localhost:8080/v1",
        "CHAOS_PLANNER_MODEL": "local-model",
        "CHAOS_PLANNER_TIMEOUT": "30",
    }):
        config = PlannerConfig.from_env(settings)
    assert config.api_key == "sk-test"
    assert config.base_url == "http://localhost:8080/v1"
    assert config.model == "local-model"
    assert config.timeout == 30.0
    assert config.temperature == 0.8
    assert config.has_credential


def test_config_without_key():
    settings = replace(Settings.from_dict({}), planner_api_key_env="CHAOS_MISSING_KEY")
    with patch.dict(os.environ, {}, clear=False):
        os.environ.pop("CHAOS_MISSING_KEY", None)
        config = PlannerConfig.from_env(settings)
    assert not config.has_credential
    client = PlannerClient(config)
    assert not client.available
    assert "CHAOS_MISSING_KEY" in client.unavailable_reason()
    with pytest.raises(PlannerNotEnabledError):
        client.request_plan({}, 2)


def test_disabled_planner_is_unavailable():
    with patch("chaos_director.planner_client.openai.OpenAI"):
        client = PlannerClient(PlannerConfig(enabled=False, api_key="sk-test"))
    assert not client.available
    assert client.unavailable_reason() == "planner disabled"


def test_request_plan_success():
    with patch("chaos_director.planner_client.openai.OpenAI") as factory:
        factory.return_value.chat.completions.create.return_value = _reply(
            json.dumps({"actions": [{"type": "CAGE", "target": "Alex"}]})
        )
        client = PlannerClient(PlannerConfig(api_key="sk-test", base_url="http://test/v1", timeout=12))
        body = client.request_plan({"tick": 1, "players": []}, 2)

    factory.assert_called_once_with(api_key="sk-test", base_url="http://test/v1", timeout=12)
    kwargs = factory.return_value.chat.completions.create.call_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["messages"][0]["role"] == "system"
    assert body == {"actions": [{"type": "CAGE", "target": "Alex"}], "commands": []}


def test_transport_errors_become_planner_errors():
    with patch("chaos_director.planner_client.openai.OpenAI") as factory:
        factory.return_value.chat.completions.create.side_effect = openai.OpenAIError("connection reset")
        client = PlannerClient(PlannerConfig(api_key="sk-test"))
        with pytest.raises(PlannerError):
            client.request_plan({}, 2)


def test_unusable_replies_raise():
    for content in (None, "", "not json", "[1, 2]", '{"plan": []}', '{"actions": "CAGE"}'):
        with pytest.raises(PlannerResponseError):
            parse_plan_content(content)


def test_parse_commands_reply():
    body = parse_plan_content('{"commands": ["title @a title \\"hi\\""]}')
    assert body == {"actions": [], "commands": ['title @a title "hi"']}


def test_messages_carry_snapshot_and_limit():
    messages = build_messages({"tick": 5, "difficulty": {"maxSeverityNow": 3}}, 2)
    system, user = messages
    assert "LAVA_TRAP" in system["content"]
    assert "{types}" not in system["content"]
    assert '{"type": "CAGE"' in system["content"]
    assert "at most 2 items" in user["content"]
    assert '"maxSeverityNow": 3' in user["content"]
