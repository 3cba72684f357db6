import pytest
from fastmcp import Client

@pytest.mark.asyncio
async def test_server_name_and_ping():
    from certsmith.server import mcp

    assert getattr(mcp, "name", "") == "Certsmith"

    async with Client(mcp) as client:
        result = await client.call_tool("ping", {})
        assert result.data == "pong"
        assert result.structured_content == {"result": "pong"}

@pytest.mark.asyncio
async def test_tools_are_listed():
    from certsmith.server import mcp

    async with Client(mcp) as client:
        tools = {t.name for t in await client.list_tools()}
    assert {"ping", "sign_csr", "generate_certificate", "certificate_info"} <= tools
