"""
Polaris — AI coding workspace backend.

A user chat message becomes a durable agent run: the coding model calls
file tools against the project's virtual file tree until it has a final
answer, which is written back onto the assistant message.
"""

__version__ = "0.1.0"
