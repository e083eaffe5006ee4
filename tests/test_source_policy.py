"""Tests for source classification, the remote opt-in flag and the runtime mode resolver."""

import pytest

from exthost.extensions.permissions import TrustLevel
from exthost.extensions.runtime_mode import (
    RuntimeMode,
    describe_runtime_mode,
    is_sandbox_candidate,
    resolve_runtime_mode,
)
from exthost.extensions.source_policy import SourceKind, classify_extension_source, is_remote_opt_in


class TestClassifySource:
    @pytest.mark.parametrize(
        ("specifier", "kind"),
        [
            ("./notes.py", SourceKind.LOCAL_MODULE),
            ("../shared/ext.py", SourceKind.LOCAL_MODULE),
            ("/abs/ext.py", SourceKind.LOCAL_MODULE),
            ("blob:1234", SourceKind.BLOB_URL),
            ("https://example.com/ext.py", SourceKind.REMOTE_URL),
            ("HTTP://example.com/ext.py", SourceKind.REMOTE_URL),
            ("http://", SourceKind.UNSUPPORTED),
            ("ftp://example.com/ext.py", SourceKind.UNSUPPORTED),
            ("notes", SourceKind.UNSUPPORTED),
            ("   ", SourceKind.UNSUPPORTED),
        ],
    )
    def test_classify(self, specifier: str, kind: SourceKind) -> None:
        assert classify_extension_source(specifier) == kind


class TestRemoteOptIn:
    @pytest.mark.parametrize("raw", [True, "1", "true", " TRUE "])
    def test_enabled(self, raw: object) -> None:
        assert is_remote_opt_in(raw) is True

    @pytest.mark.parametrize("raw", [False, None, "0", "yes", 1])
    def test_disabled(self, raw: object) -> None:
        assert is_remote_opt_in(raw) is False


class TestResolveRuntimeMode:
    @pytest.mark.parametrize(
        ("trust", "sandbox_enabled", "mode"),
        [
            (TrustLevel.BUILTIN, True, RuntimeMode.HOST),
            (TrustLevel.LOCAL_MODULE, True, RuntimeMode.HOST),
            (TrustLevel.INLINE_CODE, True, RuntimeMode.SANDBOX_IFRAME),
            (TrustLevel.REMOTE_URL, True, RuntimeMode.SANDBOX_IFRAME),
            (TrustLevel.BUILTIN, False, RuntimeMode.HOST),
            (TrustLevel.LOCAL_MODULE, False, RuntimeMode.HOST),
            (TrustLevel.INLINE_CODE, False, RuntimeMode.HOST),
            (TrustLevel.REMOTE_URL, False, RuntimeMode.HOST),
        ],
    )
    def test_table(self, trust: TrustLevel, sandbox_enabled: bool, mode: RuntimeMode) -> None:
        assert resolve_runtime_mode(trust, sandbox_enabled) == mode

    def test_candidates(self) -> None:
        assert is_sandbox_candidate(TrustLevel.INLINE_CODE)
        assert not is_sandbox_candidate(TrustLevel.BUILTIN)

    def test_labels(self) -> None:
        assert describe_runtime_mode(RuntimeMode.HOST) == "host runtime"
        assert describe_runtime_mode(RuntimeMode.SANDBOX_IFRAME) == "sandbox iframe"
