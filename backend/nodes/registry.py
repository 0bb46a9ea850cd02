"""
Node Type Registry — lookup table from node type string to handler class.

Handlers register themselves with ``@register_node("<type>")``. The built-in
implementations are imported lazily on first registry construction.
"""

from typing import Callable, Dict, Optional, Type

from nodes.base_node import BaseNode

_BUILTIN_NODES: Dict[str, Type[BaseNode]] = {}


def register_node(node_type: str) -> Callable[[Type[BaseNode]], Type[BaseNode]]:
    """Class decorator registering a handler under ``node_type``."""

    def decorator(cls: Type[BaseNode]) -> Type[BaseNode]:
        cls.node_type = node_type
        _BUILTIN_NODES[node_type] = cls
        return cls

    return decorator


class NodeRegistry:
    """Central registry for all node handler implementations."""

    def __init__(self, include_builtin: bool = True):
        self._nodes: Dict[str, Type[BaseNode]] = {}
        if include_builtin:
            self._register_builtin_nodes()

    def _register_builtin_nodes(self):
        """Register all built-in node types."""
        import nodes.implementations.flow_nodes  # noqa: F401
        import nodes.implementations.http_node  # noqa: F401
        import nodes.implementations.notification_nodes  # noqa: F401
        import nodes.implementations.task_node  # noqa: F401

        for node_type, node_class in _BUILTIN_NODES.items():
            self.register(node_type, node_class)

    def register(self, node_type: str, node_class: Type[BaseNode]):
        """Register (or replace) a handler for a node type."""
        self._nodes[node_type] = node_class

    def get(self, node_type: str) -> Optional[Type[BaseNode]]:
        """Get a handler class by type string."""
        return self._nodes.get(node_type)

    def create_instance(self, node_type: str) -> Optional[BaseNode]:
        """Create a new handler instance by type."""
        node_class = self.get(node_type)
        if node_class:
            return node_class()
        return None

    def list_all(self) -> list:
        """List all registered node types with metadata."""
        return [
            {
                "node_type": node_type,
                "display_name": cls.display_name,
                "description": cls.description,
                "config_schema": cls.get_config_schema(),
            }
            for node_type, cls in self._nodes.items()
        ]

    @property
    def available_types(self) -> list:
        return list(self._nodes.keys())


# Singleton
_registry: Optional[NodeRegistry] = None


def get_node_registry() -> NodeRegistry:
    """Get or create the singleton node registry."""
    global _registry
    if _registry is None:
        _registry = NodeRegistry()
    return _registry
