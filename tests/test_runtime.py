"""Tests for agenthost.runtime: agent runtime, model clients, and plugins."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from agenthost.errors import AgentBringUpError, ModelProviderError
from agenthost.runtime import (
    AgentRuntime,
    AnthropicModelClient,
    OpenAICompatibleModelClient,
    Plugin,
    bootstrap_plugin,
    create_model_client,
    load_plugin,
    resolve_plugins,
)
from agenthost.runtime.models import PROVIDER_ENDPOINTS
from agenthost.storage import CacheManager, DbCacheAdapter, SqliteDatabaseAdapter
from agenthost.types import ModelProviderName

example_plugin = Plugin(name="example", description="test plugin", actions=["wave"])


async def _runtime(tmp_path: Path, character, model_factory) -> AgentRuntime:
    db = SqliteDatabaseAdapter(tmp_path / "cache.db")
    await db.init()
    character.fill_defaults()
    runtime = AgentRuntime(
        database_adapter=db,
        token="sk-test",
        model_provider=character.model_provider,
        character=character,
        plugins=[bootstrap_plugin, example_plugin],
        evaluators=[],
        providers=[],
        actions=[],
        services=[],
        managers=[],
        cache_manager=CacheManager(DbCacheAdapter(db, character.id)),
        model_client_factory=model_factory,
    )
    await runtime.initialize()
    return runtime


class TestAgentRuntime:
    def test_requires_character_id(self, make_character) -> None:
        with pytest.raises(AgentBringUpError):
            AgentRuntime(
                database_adapter=MagicMock(),
                token=None,
                model_provider=ModelProviderName.OPENAI,
                character=make_character(),
                plugins=[],
                evaluators=[],
                providers=[],
                actions=[],
                services=[],
                managers=[],
                cache_manager=MagicMock(),
            )

    @pytest.mark.asyncio
    async def test_initialize_creates_account_and_model(
        self, tmp_path, make_character, model_factory
    ) -> None:
        runtime = await _runtime(tmp_path, make_character(), model_factory)
        assert runtime.initialized
        assert runtime.database_adapter.get_account(runtime.agent_id)["name"] == "Norinder"
        assert model_factory.created == [(ModelProviderName.OPENROUTER, "sk-test", None)]
        assert runtime.actions == ["wave"]

    @pytest.mark.asyncio
    async def test_process_message_stores_both_sides(
        self, tmp_path, make_character, model_factory, fake_model
    ) -> None:
        runtime = await _runtime(tmp_path, make_character(), model_factory)
        replies = await runtime.process_message("Hello", user_id="user", user_name="User")
        assert [r.to_dict() for r in replies] == [{"text": "Namaste", "user": "Norinder"}]
        history = runtime.database_adapter.get_memories(runtime.agent_id, runtime.room_id_for("user"))
        assert [(m.role, m.text) for m in history] == [("user", "Hello"), ("assistant", "Namaste")]
        assert fake_model.calls[0]["messages"] == [{"role": "user", "content": "Hello"}]
        assert "A calm yoga teacher." in fake_model.calls[0]["system"]

    @pytest.mark.asyncio
    async def test_conversation_history_is_sent(
        self, tmp_path, make_character, model_factory, fake_model
    ) -> None:
        runtime = await _runtime(tmp_path, make_character(), model_factory)
        await runtime.process_message("one", user_id="u", user_name="U")
        await runtime.process_message("two", user_id="u", user_name="U")
        assert [m["content"] for m in fake_model.calls[1]["messages"]] == ["one", "Namaste", "two"]

    @pytest.mark.asyncio
    async def test_not_initialized(self, tmp_path, make_character, model_factory) -> None:
        runtime = await _runtime(tmp_path, make_character(), model_factory)
        await runtime.shutdown()
        assert not runtime.initialized
        with pytest.raises(RuntimeError):
            await runtime.process_message("hi", user_id="u", user_name="U")

    @pytest.mark.asyncio
    async def test_generate_post_is_trimmed(
        self, tmp_path, make_character, model_factory, fake_model
    ) -> None:
        fake_model.replies = ['"' + "x" * 400 + '"']
        runtime = await _runtime(
            tmp_path, make_character(topics=["yoga"], postExamples=["Breathe."]), model_factory
        )
        post = await runtime.generate_post()
        assert post == "x" * 280
        assert "yoga" in fake_model.calls[0]["messages"][0]["content"]

    def test_system_prompt_sections(self, make_character) -> None:
        c = make_character(
            system="You are Nori.",
            lore=["Grew up by the sea."],
            adjectives=["calm"],
            style={"all": ["short"], "chat": ["warm"]},
        )
        c.fill_defaults()
        runtime = AgentRuntime(
            database_adapter=MagicMock(),
            token=None,
            model_provider=c.model_provider,
            character=c,
            plugins=[],
            evaluators=[],
            providers=[],
            actions=[],
            services=[],
            managers=[],
            cache_manager=MagicMock(),
        )
        prompt = runtime.compose_system_prompt()
        assert prompt.startswith("You are Nori.")
        for fragment in ("Grew up by the sea.", "You are calm.", "- short", "- warm"):
            assert fragment in prompt


class TestModelClients:
    def test_missing_token_is_bring_up_error(self) -> None:
        with pytest.raises(AgentBringUpError):
            create_model_client(ModelProviderName.OPENROUTER, None)

    def test_anthropic_provider(self) -> None:
        client = create_model_client(ModelProviderName.ANTHROPIC, "sk-ant", "claude-test")
        assert isinstance(client, AnthropicModelClient)
        assert client.model == "claude-test"

    def test_openai_compatible_default_model(self) -> None:
        client = create_model_client(ModelProviderName.GROQ, "gsk")
        assert isinstance(client, OpenAICompatibleModelClient)
        assert client.model == PROVIDER_ENDPOINTS[ModelProviderName.GROQ].default_model

    @pytest.mark.asyncio
    async def test_openai_compatible_completion(self) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"choices": [{"message": {"content": " Namaste "}}]})

        client = OpenAICompatibleModelClient(
            PROVIDER_ENDPOINTS[ModelProviderName.OPENROUTER],
            "sk-or",
            transport=httpx.MockTransport(handler),
        )
        text = await client.complete("sys", [{"role": "user", "content": "Hello"}], max_tokens=50)
        await client.close()
        assert text == "Namaste"
        assert seen["url"] == "https://openrouter.ai/api/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-or"
        assert seen["body"]["messages"][0] == {"role": "system", "content": "sys"}
        assert seen["body"]["max_tokens"] == 50

    @pytest.mark.asyncio
    async def test_openai_compatible_http_error(self) -> None:
        client = OpenAICompatibleModelClient(
            PROVIDER_ENDPOINTS[ModelProviderName.OPENAI],
            "sk",
            transport=httpx.MockTransport(lambda r: httpx.Response(429, json={})),
        )
        with pytest.raises(ModelProviderError):
            await client.complete("sys", [])
        await client.close()

    @pytest.mark.asyncio
    async def test_openai_compatible_bad_payload(self) -> None:
        client = OpenAICompatibleModelClient(
            PROVIDER_ENDPOINTS[ModelProviderName.OPENAI],
            "sk",
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"choices": []})),
        )
        with pytest.raises(ModelProviderError):
            await client.complete("sys", [])
        await client.close()

    @pytest.mark.asyncio
    async def test_anthropic_completion_joins_text_blocks(self) -> None:
        client = AnthropicModelClient("sk-ant")
        response = MagicMock()
        response.content = [
            MagicMock(type="text", text="Nama"),
            MagicMock(type="tool_use", text="ignored"),
            MagicMock(type="text", text="ste"),
        ]
        with patch.object(
            client._client.messages, "create", AsyncMock(return_value=response)
        ) as create:
            assert await client.complete("sys", [{"role": "user", "content": "hi"}]) == "Namaste"
        assert create.await_args.kwargs["system"] == "sys"
        await client.close()


class TestPlugins:
    def test_load_plugin_by_descriptor(self, tmp_path, monkeypatch) -> None:
        (tmp_path / "wave_plugin.py").write_text(
            "from agenthost.runtime.plugins import Plugin\n"
            "plugin = Plugin(name='wave', actions=['wave'])\n"
        )
        monkeypatch.syspath_prepend(str(tmp_path))
        plugin = load_plugin("wave_plugin:plugin")
        assert plugin.name == "wave"
        assert plugin.actions == ["wave"]

    def test_load_bootstrap(self) -> None:
        assert load_plugin("agenthost.runtime.plugins:bootstrap_plugin") is bootstrap_plugin

    @pytest.mark.parametrize(
        "descriptor",
        ["no-colon", "agenthost.nope:thing", "agenthost.runtime.plugins:load_plugin"],
    )
    def test_bad_descriptors(self, descriptor: str) -> None:
        with pytest.raises(AgentBringUpError):
            load_plugin(descriptor)

    def test_resolve_plugins(self) -> None:
        assert resolve_plugins([]) == []
        assert resolve_plugins(["agenthost.runtime.plugins:bootstrap_plugin"]) == [bootstrap_plugin]
