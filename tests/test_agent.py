"""Tests for the agent's connection lifecycle and request sequencing."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import FakeModel, delta_event
from mcp.types import (
    CallToolResult,
    GetPromptResult,
    PromptMessage,
    TextContent,
    TextResourceContents,
)
from pydantic import ValidationError

from duckdb_mcp.agent import (
    AgentNotConnectedError,
    ConnectionState,
    DuckDBAgent,
    RequestPhase,
    ToolExecutionError,
    result_text,
)
from duckdb_mcp.llm.bedrock import BedrockStreamer
from duckdb_mcp.llm.stream import ModelStreamError

SCHEMA = [
    {
        "table_name": "tripdata",
        "column_name": "trip_distance",
        "data_type": "DOUBLE",
        "is_nullable": True,
        "column_default": None,
    }
]


def _tool_result(text: str, is_error: bool = False) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=text)], isError=is_error)


def _resource(uri: str, text: str, mime_type: str = "application/json"):
    return [TextResourceContents(uri=uri, mimeType=mime_type, text=text)]


def make_client(tools: dict | None = None, schema_text: str | None = None) -> MagicMock:
    """A mock FastMCP client. ``tools`` maps tool name -> result or exception."""
    tools = tools or {}
    client = MagicMock()

    async def read_resource(uri):
        if uri == "schema://schema":
            return _resource(uri, json.dumps(SCHEMA) if schema_text is None else schema_text)
        return _resource(uri, json.dumps([{"table_name": "tripdata"}]))

    async def call_tool_mcp(name, arguments):
        outcome = tools.get(name, _tool_result("[]"))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    client.read_resource = AsyncMock(side_effect=read_resource)
    client.call_tool_mcp = AsyncMock(side_effect=call_tool_mcp)
    client.get_prompt = AsyncMock()
    client.list_resources = AsyncMock(return_value=[])
    client.list_tools = AsyncMock(return_value=[])
    client.list_prompts = AsyncMock(return_value=[])
    return client


def make_agent(client, settings, events=None) -> tuple[DuckDBAgent, FakeModel]:
    model = FakeModel(events if events is not None else [delta_event("SELECT 1")])
    return DuckDBAgent(client=client, model=model, settings=settings), model


# ---------------------------------------------------------------------------
# Connection lifecycle
# ---------------------------------------------------------------------------


class TestConnection:
    @pytest.mark.asyncio
    async def test_initialize_connects(self, settings):
        client = make_client()
        agent, _ = make_agent(client, settings)

        await agent.initialize()

        assert agent.state == ConnectionState.CONNECTED
        assert agent.is_connected
        client.__aenter__.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connect_failure_leaves_disconnected(self, settings):
        client = make_client()
        client.__aenter__.side_effect = ConnectionError("spawn failed")
        agent, _ = make_agent(client, settings)

        with pytest.raises(ConnectionError, match="spawn failed"):
            await agent.initialize()

        assert agent.state == ConnectionState.DISCONNECTED
        with pytest.raises(AgentNotConnectedError):
            await agent.get_available_tables()

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, settings):
        client = make_client()
        agent, _ = make_agent(client, settings)
        await agent.initialize()

        await agent.disconnect()
        await agent.disconnect()

        assert agent.state == ConnectionState.DISCONNECTED
        assert client.__aexit__.await_count == 1

    @pytest.mark.asyncio
    async def test_disconnect_before_connect(self, settings):
        client = make_client()
        agent, _ = make_agent(client, settings)
        await agent.disconnect()
        client.__aexit__.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_async_context_manager(self, settings):
        client = make_client()
        agent, _ = make_agent(client, settings)

        async with agent:
            assert agent.is_connected
        assert agent.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "operation",
        [
            lambda a: a.call_bedrock("q"),
            lambda a: a.get_sql_suggestion("q"),
            lambda a: a.get_available_tables(),
            lambda a: a.execute_custom_sql("SELECT 1"),
            lambda a: a.optimize_query("SELECT 1"),
            lambda a: a.list_available_resources(),
            lambda a: a.list_available_tools(),
            lambda a: a.list_available_prompts(),
        ],
    )
    async def test_operations_require_connection(self, settings, operation):
        client = make_client()
        agent, model = make_agent(client, settings)

        with pytest.raises(AgentNotConnectedError, match="Call initialize\\(\\) first"):
            await operation(agent)

        client.read_resource.assert_not_called()
        client.call_tool_mcp.assert_not_called()
        client.get_prompt.assert_not_called()
        assert model.calls == []


# ---------------------------------------------------------------------------
# call_bedrock
# ---------------------------------------------------------------------------


class TestCallBedrock:
    @pytest.mark.asyncio
    async def test_full_sequence(self, settings):
        client = make_client(
            tools={
                "execute-sql": _tool_result(json.dumps([{"longest": 7.1}])),
                "analyze-query": _tool_result("[]"),
            }
        )
        events = [
            delta_event("```sql\nSELECT MAX(trip_distance) "),
            delta_event("AS longest FROM tripdata\n```"),
        ]
        agent, model = make_agent(client, settings, events)
        await agent.initialize()

        rows = await agent.call_bedrock("longest trip?")

        assert rows == [{"longest": 7.1}]
        sql = "SELECT MAX(trip_distance) AS longest FROM tripdata"
        assert agent.last_sql == sql
        assert agent.phase == RequestPhase.IDLE

        client.read_resource.assert_awaited_once_with("schema://schema")
        assert [c.args for c in client.call_tool_mcp.await_args_list] == [
            ("execute-sql", {"sql": sql, "limit": 100}),
            ("analyze-query", {"sql": sql}),
        ]

        (messages, max_tokens), = model.calls
        assert max_tokens == settings.bedrock_max_tokens
        assert "longest trip?" in messages[0]["content"]
        assert '"column_name": "trip_distance"' in messages[0]["content"]

    @pytest.mark.asyncio
    async def test_row_limit_from_settings(self, settings):
        settings = settings.model_copy(update={"default_row_limit": 25})
        client = make_client()
        agent, _ = make_agent(client, settings)
        await agent.initialize()

        await agent.call_bedrock("q")

        name, arguments = client.call_tool_mcp.await_args_list[0].args
        assert name == "execute-sql"
        assert arguments["limit"] == 25

    @pytest.mark.asyncio
    async def test_execution_error_returns_none_and_skips_analysis(self, settings):
        client = make_client(
            tools={"execute-sql": _tool_result("SQL execution error: no such table", is_error=True)}
        )
        agent, _ = make_agent(client, settings)
        await agent.initialize()

        assert await agent.call_bedrock("q") is None
        assert [c.args[0] for c in client.call_tool_mcp.await_args_list] == ["execute-sql"]
        assert agent.is_connected

    @pytest.mark.asyncio
    async def test_analysis_failure_is_swallowed(self, settings):
        client = make_client(
            tools={
                "execute-sql": _tool_result(json.dumps([{"n": 1}])),
                "analyze-query": RuntimeError("transport hiccup"),
            }
        )
        agent, _ = make_agent(client, settings)
        await agent.initialize()

        assert await agent.call_bedrock("q") == [{"n": 1}]

    @pytest.mark.asyncio
    async def test_analysis_error_result_is_ignored(self, settings):
        client = make_client(
            tools={
                "execute-sql": _tool_result(json.dumps([{"n": 1}])),
                "analyze-query": _tool_result("Query analysis error: nope", is_error=True),
            }
        )
        agent, _ = make_agent(client, settings)
        await agent.initialize()

        assert await agent.call_bedrock("q") == [{"n": 1}]

    @pytest.mark.asyncio
    async def test_schema_diagnostic_is_fatal(self, settings):
        client = make_client(schema_text="Error retrieving schema: database is closed")
        agent, model = make_agent(client, settings)
        await agent.initialize()

        with pytest.raises(json.JSONDecodeError):
            await agent.call_bedrock("q")

        assert model.calls == []
        client.call_tool_mcp.assert_not_called()
        assert agent.phase == RequestPhase.IDLE

    @pytest.mark.asyncio
    async def test_model_failure_propagates(self, settings):
        client = make_client()
        agent, _ = make_agent(
            client, settings, [{"modelTimeoutException": {"message": "timed out"}}]
        )
        await agent.initialize()

        with pytest.raises(ModelStreamError, match="timed out"):
            await agent.call_bedrock("q")
        client.call_tool_mcp.assert_not_called()


# ---------------------------------------------------------------------------
# Other operations
# ---------------------------------------------------------------------------


class TestOtherOperations:
    @pytest.mark.asyncio
    async def test_get_sql_suggestion(self, settings):
        client = make_client(tools={"generate-sql": _tool_result("Schema Information:\n[]")})
        agent, _ = make_agent(client, settings)
        await agent.initialize()

        text = await agent.get_sql_suggestion("how many?", "2022 only")

        assert text == "Schema Information:\n[]"
        client.call_tool_mcp.assert_awaited_once_with(
            "generate-sql", {"question": "how many?", "context": "2022 only"}
        )

    @pytest.mark.asyncio
    async def test_get_sql_suggestion_without_context(self, settings):
        client = make_client()
        agent, _ = make_agent(client, settings)
        await agent.initialize()

        await agent.get_sql_suggestion("how many?")

        client.call_tool_mcp.assert_awaited_once_with("generate-sql", {"question": "how many?"})

    @pytest.mark.asyncio
    async def test_get_sql_suggestion_error(self, settings):
        client = make_client(
            tools={"generate-sql": _tool_result("Error generating SQL: closed", is_error=True)}
        )
        agent, _ = make_agent(client, settings)
        await agent.initialize()

        with pytest.raises(ToolExecutionError, match="SQL generation error: Error generating SQL"):
            await agent.get_sql_suggestion("q")

    @pytest.mark.asyncio
    async def test_get_available_tables(self, settings):
        client = make_client()
        agent, _ = make_agent(client, settings)
        await agent.initialize()

        assert await agent.get_available_tables() == [{"table_name": "tripdata"}]
        client.read_resource.assert_awaited_once_with("schema://tables")

    @pytest.mark.asyncio
    async def test_execute_custom_sql(self, settings):
        client = make_client(tools={"execute-sql": _tool_result(json.dumps([{"x": 1}]))})
        agent, _ = make_agent(client, settings)
        await agent.initialize()

        assert await agent.execute_custom_sql("SELECT 1 AS x", limit=5) == [{"x": 1}]
        client.call_tool_mcp.assert_awaited_once_with(
            "execute-sql", {"sql": "SELECT 1 AS x", "limit": 5}
        )

    @pytest.mark.asyncio
    async def test_execute_custom_sql_default_limit(self, settings):
        client = make_client()
        agent, _ = make_agent(client, settings)
        await agent.initialize()

        await agent.execute_custom_sql("SELECT 1")

        client.call_tool_mcp.assert_awaited_once_with(
            "execute-sql", {"sql": "SELECT 1", "limit": 100}
        )

    @pytest.mark.asyncio
    async def test_execute_custom_sql_zero_limit_rejected(self, settings):
        client = make_client()
        agent, _ = make_agent(client, settings)
        await agent.initialize()

        with pytest.raises(ValidationError):
            await agent.execute_custom_sql("SELECT 1", limit=0)
        client.call_tool_mcp.assert_not_called()

    @pytest.mark.asyncio
    async def test_execute_custom_sql_error(self, settings):
        client = make_client(
            tools={"execute-sql": _tool_result("SQL execution error: boom", is_error=True)}
        )
        agent, _ = make_agent(client, settings)
        await agent.initialize()

        with pytest.raises(ToolExecutionError, match="boom"):
            await agent.execute_custom_sql("SELECT boom")

    @pytest.mark.asyncio
    async def test_optimize_query(self, settings):
        client = make_client()
        client.get_prompt.return_value = GetPromptResult(
            messages=[
                PromptMessage(role="user", content=TextContent(type="text", text="Optimize this"))
            ]
        )
        agent, model = make_agent(
            client, settings, [delta_event("  Use a filter "), delta_event("first.\n")]
        )
        await agent.initialize()

        answer = await agent.optimize_query("SELECT * FROM t", "slow")

        assert answer == "Use a filter first."
        client.get_prompt.assert_awaited_once_with(
            "optimize-query", {"sql": "SELECT * FROM t", "performance_issues": "slow"}
        )
        assert model.calls == [([{"role": "user", "content": "Optimize this"}], 1500)]

    @pytest.mark.asyncio
    async def test_listing(self, settings):
        client = make_client()
        agent, _ = make_agent(client, settings)
        await agent.initialize()

        assert await agent.list_available_resources() == []
        assert await agent.list_available_tools() == []
        assert await agent.list_available_prompts() == []


def test_result_text_skips_non_text_blocks():
    block = MagicMock(spec=[])
    result = MagicMock(content=[block, TextContent(type="text", text="rows")])
    assert result_text(result) == "rows"


def test_result_text_empty():
    assert result_text(CallToolResult(content=[])) == ""


class TestBedrockBackend:
    @pytest.mark.asyncio
    async def test_generates_through_bedrock_streamer(self, settings):
        boto_client = MagicMock()
        boto_client.invoke_model_with_response_stream.return_value = {
            "body": iter([delta_event("SELECT "), delta_event("1 AS n")])
        }
        model = BedrockStreamer(settings.bedrock_config(), client=boto_client)
        client = make_client(tools={"execute-sql": _tool_result(json.dumps([{"n": 1}]))})
        agent = DuckDBAgent(client=client, model=model, settings=settings)
        await agent.initialize()

        assert await agent.call_bedrock("one?") == [{"n": 1}]

        assert agent.last_sql == "SELECT 1 AS n"
        body = json.loads(boto_client.invoke_model_with_response_stream.call_args.kwargs["body"])
        assert body["max_tokens"] == settings.bedrock_max_tokens
        assert "one?" in body["messages"][0]["content"]
