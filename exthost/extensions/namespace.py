"""Ownership of the global tool and command namespaces.

One ExtensionNamespace per runtime manager. A name belongs to at most one
extension at a time; host-reserved names never belong to an extension.
Each claim also records the activation that made it, so tearing down a
superseded activation of the same extension cannot release names that the
newer activation holds.
"""

from collections.abc import Iterable
from typing import NamedTuple

from exthost.extensions.errors import NamespaceConflictError
from exthost.extensions.models import ExtensionCommand, ExtensionTool


class _Claim(NamedTuple):
    owner_id: str
    token: object


class ExtensionNamespace:
    def __init__(
        self,
        reserved_tool_names: Iterable[str] = (),
        reserved_command_names: Iterable[str] = (),
    ) -> None:
        self.reserved_tool_names = frozenset(reserved_tool_names)
        self.reserved_command_names = frozenset(reserved_command_names)
        self.tools: dict[str, ExtensionTool] = {}
        self.commands: dict[str, ExtensionCommand] = {}
        self._tool_claims: dict[str, _Claim] = {}
        self._command_claims: dict[str, _Claim] = {}

    @property
    def tool_owners(self) -> dict[str, str]:
        return {name: claim.owner_id for name, claim in self._tool_claims.items()}

    @property
    def command_owners(self) -> dict[str, str]:
        return {name: claim.owner_id for name, claim in self._command_claims.items()}

    def check_tool(self, name: str, owner_id: str, owned_by_caller: set[str]) -> None:
        """Raise NamespaceConflictError unless owner_id may claim the tool name."""
        if name in self.reserved_tool_names:
            raise NamespaceConflictError(f'Tool name "{name}" conflicts with a built-in tool')
        existing = self._tool_claims.get(name)
        if existing is not None and existing.owner_id != owner_id:
            raise NamespaceConflictError(
                f'Tool name "{name}" is already registered by another extension'
            )
        if name in owned_by_caller:
            raise NamespaceConflictError(
                f'Tool name "{name}" is registered multiple times by this extension'
            )

    def check_command(self, name: str, owner_id: str, owned_by_caller: set[str]) -> None:
        if name in self.reserved_command_names:
            raise NamespaceConflictError(f"Command /{name} conflicts with a built-in command")
        existing = self._command_claims.get(name)
        if existing is not None and existing.owner_id != owner_id:
            raise NamespaceConflictError(
                f"Command /{name} is already registered by another extension"
            )
        if name in owned_by_caller:
            raise NamespaceConflictError(
                f"Command /{name} is registered multiple times by this extension"
            )

    def claim_tool(self, name: str, owner_id: str, token: object) -> None:
        self._tool_claims[name] = _Claim(owner_id, token)

    def publish_tool(self, tool: ExtensionTool) -> None:
        self.tools[tool.name] = tool

    def release_tool(self, name: str, token: object) -> bool:
        """Drop the tool if token holds the claim. True when a published tool was removed."""
        claim = self._tool_claims.get(name)
        if claim is None or claim.token is not token:
            return False
        del self._tool_claims[name]
        return self.tools.pop(name, None) is not None

    def claim_command(self, command: ExtensionCommand, token: object) -> None:
        self._command_claims[command.name] = _Claim(command.owner_id, token)
        self.commands[command.name] = command

    def release_command(self, name: str, token: object) -> None:
        claim = self._command_claims.get(name)
        if claim is None or claim.token is not token:
            return
        del self._command_claims[name]
        self.commands.pop(name, None)
