"""Tests for the capability/trust model: defaults, round-trips, normalization, labels."""

import pytest
from pydantic import ValidationError

from exthost.extensions.models import InlineSource, ModuleSource
from exthost.extensions.permissions import (
    Capability,
    TrustLevel,
    all_capabilities,
    default_permissions,
    derive_trust,
    describe_capability,
    describe_trust,
    granted_capabilities,
    is_allowed,
    normalize_permissions,
    parse_capability,
    set_allowed,
)


class TestDeriveTrust:
    def test_inline_source_is_inline_code(self) -> None:
        assert derive_trust("builtin.x", InlineSource(code="x = 1")) == TrustLevel.INLINE_CODE

    def test_blob_specifier_is_inline_code(self) -> None:
        assert derive_trust("ext.1", ModuleSource(specifier="blob:abc")) == TrustLevel.INLINE_CODE

    def test_remote_url(self) -> None:
        source = ModuleSource(specifier="https://example.com/ext.py")
        assert derive_trust("builtin.remote", source) == TrustLevel.REMOTE_URL

    def test_builtin_prefix(self) -> None:
        assert derive_trust("builtin.notes", ModuleSource(specifier="./notes.py")) == TrustLevel.BUILTIN

    def test_other_local_module(self) -> None:
        assert derive_trust("ext.1", ModuleSource(specifier="./notes.py")) == TrustLevel.LOCAL_MODULE


class TestDefaults:
    @pytest.mark.parametrize("trust", [TrustLevel.INLINE_CODE, TrustLevel.REMOTE_URL])
    def test_restricted_defaults_exclude_sensitive(self, trust: TrustLevel) -> None:
        perms = default_permissions(trust)
        for cap in (
            Capability.TOOLS_REGISTER,
            Capability.AGENT_READ,
            Capability.LLM_COMPLETE,
            Capability.HTTP_FETCH,
        ):
            assert not is_allowed(perms, cap)
        assert is_allowed(perms, Capability.COMMANDS_REGISTER)
        assert is_allowed(perms, Capability.STORAGE_READWRITE)

    @pytest.mark.parametrize("trust", [TrustLevel.BUILTIN, TrustLevel.LOCAL_MODULE])
    def test_trusted_defaults(self, trust: TrustLevel) -> None:
        perms = default_permissions(trust)
        assert is_allowed(perms, Capability.TOOLS_REGISTER)
        assert is_allowed(perms, Capability.HTTP_FETCH)
        assert not is_allowed(perms, Capability.AGENT_STEER)
        assert not is_allowed(perms, Capability.SKILLS_WRITE)

    def test_permissions_are_immutable(self) -> None:
        perms = default_permissions(TrustLevel.BUILTIN)
        with pytest.raises(ValidationError):
            perms.tools_register = False  # type: ignore[misc]


class TestSetAllowed:
    @pytest.mark.parametrize("cap", list(Capability))
    @pytest.mark.parametrize("value", [True, False])
    def test_round_trip(self, cap: Capability, value: bool) -> None:
        perms = default_permissions(TrustLevel.INLINE_CODE)
        assert is_allowed(set_allowed(perms, cap, value), cap) is value

    def test_does_not_mutate_input(self) -> None:
        perms = default_permissions(TrustLevel.INLINE_CODE)
        updated = set_allowed(perms, "tools.register", True)
        assert not perms.tools_register
        assert updated.tools_register

    def test_other_fields_untouched(self) -> None:
        perms = default_permissions(TrustLevel.BUILTIN)
        updated = set_allowed(perms, Capability.HTTP_FETCH, False)
        assert granted_capabilities(updated) == [
            c for c in granted_capabilities(perms) if c != Capability.HTTP_FETCH
        ]


class TestNormalizePermissions:
    def test_missing_fields_fall_back_to_trust_defaults(self) -> None:
        perms = normalize_permissions({"tools_register": True}, TrustLevel.INLINE_CODE)
        assert perms.tools_register is True
        assert perms.http_fetch is False
        assert perms.ui_toast is True

    def test_non_bool_values_ignored(self) -> None:
        perms = normalize_permissions({"http_fetch": "yes"}, TrustLevel.BUILTIN)
        assert perms.http_fetch is True

    def test_garbage_returns_defaults(self) -> None:
        assert normalize_permissions(None, TrustLevel.REMOTE_URL) == default_permissions(
            TrustLevel.REMOTE_URL
        )


class TestCatalog:
    def test_all_capabilities_in_table_order(self) -> None:
        caps = all_capabilities()
        assert caps[0] == Capability.COMMANDS_REGISTER
        assert caps[-1] == Capability.DOWNLOAD_FILE
        assert len(caps) == len(Capability) == 17

    def test_granted_in_table_order(self) -> None:
        perms = default_permissions(TrustLevel.INLINE_CODE)
        granted = granted_capabilities(perms)
        order = all_capabilities()
        assert granted == sorted(granted, key=order.index)

    def test_parse_unknown_capability(self) -> None:
        with pytest.raises(ValueError, match="Unknown extension capability"):
            parse_capability("net.raw")

    def test_labels(self) -> None:
        assert describe_capability("http.fetch") == "fetch external HTTP resources"
        assert describe_trust(TrustLevel.REMOTE_URL) == "remote URL"
