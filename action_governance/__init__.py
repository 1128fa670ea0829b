"""Action governance engine for agent-proposed business data actions."""
