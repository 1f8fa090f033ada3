"""Test suite for the ServiceNow Foundry MCP server."""
