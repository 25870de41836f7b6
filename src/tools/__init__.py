"""Plugin framework for Nova's tool calling.

Stateful plugins (knowledge-base search) are registered when Nova is built,
see ``src.nova.app.create_nova``.
"""

from src.tools.registry import registry

__all__ = ["registry"]
