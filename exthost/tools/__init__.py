"""Agent tools provided by the extension host."""

from exthost.tools.extensions_manager import make_extensions_manager_tool

__all__ = ["make_extensions_manager_tool"]
