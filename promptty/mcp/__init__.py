"""MCP bridge between the agent and the callback ingress."""
