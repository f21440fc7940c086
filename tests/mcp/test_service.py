from __future__ import annotations

import asyncio
import logging

from toolmux.mcp import (
    DataStreamBuffer,
    MCPConfig,
    MCPServerAvailable,
    MCPServerUnavailable,
    MCPService,
    ToolCall,
    get_metadata_cache,
    serialize_server_tools,
)
from toolmux.mcp.types import CONNECTION_FAILED_REASON, TOOL_LISTING_FAILED_REASON


def run_async(coro):
    return asyncio.run(coro)


def _config(**servers) -> MCPConfig:
    return MCPConfig(mcp_servers=servers)


def test_update_global_config_reports_each_server_and_closes_clients(cache, fake_factory):
    factory = fake_factory(
        {"A": ["echo"], "B": ["search"]},
        connect_errors={"B": "connection refused"},
    )
    config = _config(
        A={"command": "echo-server"},
        B={"type": "sse", "url": "https://unreachable.example/sse"},
    )

    statuses = run_async(
        MCPService.update_global_config(
            config, cache=cache, client_factory=factory, allow_stdio=True
        )
    )

    assert isinstance(statuses["A"], MCPServerAvailable)
    assert list(statuses["A"].tools) == ["echo"]
    assert statuses["A"].tools["echo"].execute is None
    assert isinstance(statuses["B"], MCPServerUnavailable)
    assert statuses["B"].error == "connection refused"
    assert all(server.client is None for server in statuses.values())

    assert [client.close_calls for client in factory.clients] == [1]
    snapshot = cache.snapshot()
    assert snapshot.config is config
    assert snapshot.tool_owners == {"echo": "A"}
    assert set(snapshot.tools_without_execute) == {"echo"}


def test_update_global_config_defaults_to_process_wide_cache(fake_factory):
    factory = fake_factory({"A": ["echo"]})

    run_async(
        MCPService.update_global_config(
            _config(A={"command": "echo-server"}), client_factory=factory, allow_stdio=True
        )
    )

    assert get_metadata_cache().snapshot().tool_owners == {"echo": "A"}


def test_invalid_server_record_only_disables_that_server(cache, fake_factory):
    factory = fake_factory({"A": ["echo"]})

    statuses = run_async(
        MCPService.update_global_config(
            _config(A={"command": "echo-server"}, bad={"url": "https://x.example"}),
            cache=cache,
            client_factory=factory,
            allow_stdio=True,
        )
    )

    assert statuses["A"].status == "available"
    assert statuses["bad"].status == "unavailable"
    assert 'missing "type" field' in statuses["bad"].error
    assert statuses["bad"].config == {"url": "https://x.example"}


def test_listing_failure_marks_server_unavailable_and_closes_client(cache, fake_factory):
    factory = fake_factory({"A": ["echo"]}, failing_listings={"A"})

    statuses = run_async(
        MCPService.update_global_config(
            _config(A={"command": "echo-server"}),
            cache=cache,
            client_factory=factory,
            allow_stdio=True,
        )
    )

    assert statuses["A"].error == TOOL_LISTING_FAILED_REASON
    assert factory.clients_for("A")[0].close_calls == 1
    assert cache.snapshot().tool_owners == {}


def test_collision_resolves_by_configuration_order(cache, fake_factory, caplog):
    caplog.set_level(logging.WARNING, logger="toolmux.mcp")
    # A answers last, B is still registered after it.
    factory = fake_factory(
        {"A": ["search"], "B": ["search"]},
        delays={"A": 0.05},
    )

    run_async(
        MCPService.update_global_config(
            _config(
                A={"command": "a-server"},
                B={"type": "streamable-http", "url": "https://b.example/mcp"},
            ),
            cache=cache,
            client_factory=factory,
            allow_stdio=True,
        )
    )

    assert cache.snapshot().tool_owners == {"search": "B"}
    assert 'Tool conflict: "search" from "B" overrides tool from "A"' in caplog.text


def test_close_errors_do_not_fail_the_update(cache, fake_factory):
    factory = fake_factory(
        {"A": ["echo"]}, close_errors={"A": RuntimeError("close exploded")}
    )

    statuses = run_async(
        MCPService.update_global_config(
            _config(A={"command": "echo-server"}),
            cache=cache,
            client_factory=factory,
            allow_stdio=True,
        )
    )

    assert statuses["A"].status == "available"


def test_request_instance_answers_from_cache_without_connecting(cache, fake_factory):
    factory = fake_factory({"A": ["echo"], "B": ["search"]})
    run_async(
        MCPService.update_global_config(
            _config(A={"command": "a-server"}, B={"command": "b-server"}),
            cache=cache,
            client_factory=factory,
            allow_stdio=True,
        )
    )
    calls_before = list(factory.calls)

    async def scenario():
        async with MCPService.create_request_instance(
            cache=cache, client_factory=factory, allow_stdio=True
        ) as service:
            assert service.is_valid_tool_name("echo")
            assert service.is_valid_tool_name("search")
            assert not service.is_valid_tool_name("missing")
            assert service.tools == {}
            return await service.check_servers_availabilities()

    statuses = run_async(scenario())

    assert factory.calls == calls_before
    assert set(statuses) == {"A", "B"}
    assert all(server.client is None for server in statuses.values())


def test_request_instance_without_published_config_is_empty(cache, fake_factory):
    factory = fake_factory({})

    async def scenario():
        async with MCPService.create_request_instance(
            cache=cache, client_factory=factory, allow_stdio=True
        ) as service:
            return service.config, await service.check_servers_availabilities()

    config, statuses = run_async(scenario())

    assert config.mcp_servers == {}
    assert statuses == {}
    assert factory.calls == []


def test_stale_instance_reprobes_servers(cache, fake_factory):
    factory = fake_factory({"A": ["echo"], "B": ["search"]})
    first = _config(A={"command": "a-server"}, B={"command": "b-server"})
    run_async(
        MCPService.update_global_config(
            first, cache=cache, client_factory=factory, allow_stdio=True
        )
    )

    async def scenario():
        service = MCPService.create_request_instance(
            cache=cache, client_factory=factory, allow_stdio=True
        )
        await MCPService.update_global_config(
            _config(A={"command": "a-server"}),
            cache=cache,
            client_factory=factory,
            allow_stdio=True,
        )
        factory.calls.clear()
        factory._connect_errors["B"] = "refused"
        try:
            statuses = await service.check_servers_availabilities()
            opened = [client for client in factory.clients if client.close_calls == 0]
        finally:
            await service.cleanup()
        return statuses, opened

    statuses, opened = run_async(scenario())

    assert sorted(factory.calls) == ["A", "B"]
    assert statuses["A"].status == "available"
    assert statuses["B"].error == CONNECTION_FAILED_REASON
    assert [client.server_name for client in opened] == ["A"]
    assert all(client.close_calls == 1 for client in factory.clients)


def test_explicit_config_instance_probes_on_check(cache, fake_factory):
    factory = fake_factory({"A": ["echo"]})

    async def scenario():
        async with MCPService(
            _config(A={"command": "a-server"}),
            cache=cache,
            client_factory=factory,
            allow_stdio=True,
        ) as service:
            statuses = await service.check_servers_availabilities()
            return statuses, dict(service.tools)

    statuses, tools = run_async(scenario())

    assert factory.calls == ["A"]
    assert statuses["A"].status == "available"
    assert tools["echo"].execute is not None
    assert factory.clients_for("A")[0].close_calls == 1
    assert cache.snapshot() is None


def test_update_config_connects_and_keeps_clients_until_cleanup(cache, fake_factory):
    factory = fake_factory({"A": ["echo"]})

    async def scenario():
        service = MCPService(cache=cache, client_factory=factory, allow_stdio=True)
        statuses = await service.update_config(_config(A={"command": "a-server"}))
        open_before_cleanup = factory.clients_for("A")[0].close_calls
        await service.cleanup()
        await service.cleanup()
        return statuses, open_before_cleanup, service

    statuses, open_before_cleanup, service = run_async(scenario())

    assert statuses["A"].client is factory.clients_for("A")[0]
    assert open_before_cleanup == 0
    assert factory.clients_for("A")[0].close_calls == 1
    assert service.servers == {}
    assert service.tools == {}


def test_process_tool_call_annotates_known_tools(cache, fake_factory):
    factory = fake_factory(
        {"A": ["echo", "plain"]}, descriptions={"echo": "Echo the input back"}
    )
    run_async(
        MCPService.update_global_config(
            _config(A={"command": "a-server"}),
            cache=cache,
            client_factory=factory,
            allow_stdio=True,
        )
    )
    service = MCPService.create_request_instance(
        cache=cache, client_factory=factory, allow_stdio=True
    )
    stream = DataStreamBuffer()

    service.process_tool_call(
        ToolCall(tool_call_id="c1", tool_name="echo", args={"text": "hi"}), stream
    )
    service.process_tool_call(ToolCall(tool_call_id="c2", tool_name="plain"), stream)
    service.process_tool_call(ToolCall(tool_call_id="c3", tool_name="unknown"), stream)

    assert stream.annotations() == [
        {
            "type": "toolCall",
            "toolCallId": "c1",
            "serverName": "A",
            "toolName": "echo",
            "toolDescription": "Echo the input back",
        },
        {
            "type": "toolCall",
            "toolCallId": "c2",
            "serverName": "A",
            "toolName": "plain",
            "toolDescription": "No description available",
        },
    ]


def test_serialize_server_tools_is_json_ready(cache, fake_factory):
    factory = fake_factory({"A": ["echo"]}, connect_errors={"B": "refused"})
    statuses = run_async(
        MCPService.update_global_config(
            _config(A={"command": "a-server"}, B={"command": "b-server"}),
            cache=cache,
            client_factory=factory,
            allow_stdio=True,
        )
    )

    body = serialize_server_tools(statuses)

    assert body["A"]["status"] == "available"
    assert body["A"]["tools"]["echo"]["name"] == "echo"
    assert "execute" not in body["A"]["tools"]["echo"]
    assert body["B"] == {
        "status": "unavailable",
        "error": "refused",
        "config": {"command": "b-server"},
    }


def test_cancelled_attempt_still_reports_the_server(cache, fake_factory):
    inner = fake_factory({"A": ["echo"]})

    async def factory(server_name, config, *, allow_stdio):
        if server_name == "B":
            raise asyncio.CancelledError()
        return await inner(server_name, config, allow_stdio=allow_stdio)

    statuses = run_async(
        MCPService.update_global_config(
            _config(A={"command": "a-server"}, B={"command": "b-server"}),
            cache=cache,
            client_factory=factory,
            allow_stdio=True,
        )
    )

    assert set(statuses) == {"A", "B"}
    assert statuses["A"].status == "available"
    assert isinstance(statuses["B"], MCPServerUnavailable)
    assert statuses["B"].error == "CancelledError"
    assert statuses["B"].config == {"command": "b-server"}
    assert set(cache.snapshot().servers) == {"A", "B"}
