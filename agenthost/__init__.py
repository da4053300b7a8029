"""
agenthost: Process supervisor for a long-running conversational-agent host.

Brings up one or more character-configured agents, keeps the host process
alive under bounded memory, exposes an interactive console that round-trips
through the local message API, and releases every owned resource in order on
shutdown or fatal error.

Layers (bottom to top):
    1. Storage (SQLite database adapter + cache manager)
    2. Agent runtime (model client, plugins, conversation memory)
    3. Clients (local direct HTTP client, optional platform clients)
    4. Supervisor (watchdog, resource registry, bring-up, shutdown, console)
"""

__version__ = "0.1.0"
