"""
Tests for handler wrapping.
"""

import importlib.util
import os
from pathlib import Path
from typing import Any, Callable

import pytest

from lambda_deploy.errors import BundleIOError
from lambda_deploy.types import HandlerSpec
from lambda_deploy.wrapper import generate_wrapper, wrap_handler


def _load_module(path: Path, name: str) -> Any:
    spec = importlib.util.spec_from_file_location(name, path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestWrapHandler:
    """Entry reference rewriting."""

    def test_no_injections_returns_original(
        self, make_bundle: Callable[..., Path]
    ) -> None:
        """Test the handler is unchanged and nothing is written."""
        root = make_bundle({"server/index.mjs": "export const handler = 1;"})
        before = sorted(p.name for p in (root / "server").iterdir())

        entry = wrap_handler(
            HandlerSpec(bundle_path=root, handler="server/index.handler")
        )

        assert entry == "server/index.handler"
        assert sorted(p.name for p in (root / "server").iterdir()) == before

    def test_node_entry_reference(
        self, make_bundle: Callable[..., Path]
    ) -> None:
        root = make_bundle({"server/index.mjs": "export const handler = 1;"})

        entry = wrap_handler(
            HandlerSpec(
                bundle_path=root,
                handler="server/index.handler",
                injections=("globalThis.ready = true;",),
            )
        )

        assert entry == "server/server-index.handler"
        assert (root / "server" / "server-index.mjs").exists()

    def test_root_level_handler(
        self, make_bundle: Callable[..., Path]
    ) -> None:
        root = make_bundle({"index.js": "exports.handler = () => 1;"})

        entry = wrap_handler(
            HandlerSpec(
                bundle_path=root,
                handler="index.handler",
                injections=("console.log('boot');",),
            )
        )

        assert entry == "server-index.handler"

    def test_malformed_handler_rejected(
        self, make_bundle: Callable[..., Path]
    ) -> None:
        root = make_bundle({"index.js": ""})

        with pytest.raises(ValueError, match="<module>.<function>"):
            wrap_handler(
                HandlerSpec(
                    bundle_path=root, handler="index", injections=("x;",)
                )
            )


class TestNodeWrapper:
    """Generated Node.js wrapper source."""

    def test_buffered_wrapper_source(
        self, make_bundle: Callable[..., Path]
    ) -> None:
        """Test injections run in order before the original is imported."""
        root = make_bundle({"server/index.js": "exports.main = () => 1;"})

        rewritten = generate_wrapper(
            HandlerSpec(
                bundle_path=root,
                handler="server/index.main",
                injections=("first();", "second();"),
            )
        )
        source = rewritten.path.read_text()

        assert rewritten.module_name == "server-index"
        assert rewritten.exported_symbol == "handler"
        assert "export const handler = async (event, context) =>" in source
        assert 'await import("./index.js")' in source
        assert "const { main: rawHandler }" in source
        assert "return rawHandler(event, context);" in source
        assert "streamifyResponse" not in source
        first = source.index("first();")
        second = source.index("second();")
        load = source.index("await import")
        assert first < second < load

    def test_streaming_wrapper_source(
        self, make_bundle: Callable[..., Path]
    ) -> None:
        """Test streaming handlers keep the response stream argument."""
        root = make_bundle({"index.mjs": "export const handler = 1;"})

        rewritten = generate_wrapper(
            HandlerSpec(
                bundle_path=root,
                handler="index.handler",
                streaming=True,
                injections=("init();",),
            )
        )
        source = rewritten.path.read_text()

        assert "awslambda.streamifyResponse(" in source
        assert "async (event, responseStream, context)" in source
        assert (
            "return rawHandler(event, responseStream, context);" in source
        )
        assert source.index("init();") < source.index("await import")

    def test_missing_module_defaults_to_mjs(
        self, make_bundle: Callable[..., Path]
    ) -> None:
        root = make_bundle({"other.js": ""})

        rewritten = generate_wrapper(
            HandlerSpec(
                bundle_path=root, handler="index.handler", injections=("x;",)
            )
        )

        assert 'await import("./index.mjs")' in rewritten.path.read_text()

    def test_unwritable_directory(
        self, make_bundle: Callable[..., Path], mocker
    ) -> None:
        root = make_bundle({"index.mjs": ""})
        mocker.patch(
            "lambda_deploy.wrapper.open",
            side_effect=PermissionError("read-only file system"),
            create=True,
        )

        with pytest.raises(BundleIOError, match="read-only"):
            generate_wrapper(
                HandlerSpec(
                    bundle_path=root,
                    handler="index.handler",
                    injections=("x;",),
                )
            )


class TestPythonWrapper:
    """Generated Python wrapper, loaded and invoked."""

    HANDLER_SOURCE = (
        "CALLS = []\n"
        "\n"
        "def main(event, context):\n"
        "    CALLS.append('handler')\n"
        "    return {'event': event, 'context': context}\n"
    )

    def test_wrapper_runs_injections_then_handler(
        self, make_bundle: Callable[..., Path]
    ) -> None:
        root = make_bundle({"app/handler.py": self.HANDLER_SOURCE})
        marker = root / "order.txt"

        entry = wrap_handler(
            HandlerSpec(
                bundle_path=root,
                handler="app/handler.main",
                injections=(
                    f"open({str(marker)!r}, 'a').write('first\\n')",
                    f"open({str(marker)!r}, 'a').write('second\\n')",
                ),
            )
        )
        assert entry == "app/server_index.handler"

        wrapper = _load_module(
            root / "app" / "server_index.py", "test_server_index"
        )
        result = wrapper.handler({"path": "/"}, "ctx")

        assert result == {"event": {"path": "/"}, "context": "ctx"}
        assert marker.read_text() == "first\nsecond\n"

    def test_multiline_injection(
        self, make_bundle: Callable[..., Path]
    ) -> None:
        root = make_bundle({"handler.py": self.HANDLER_SOURCE})

        wrap_handler(
            HandlerSpec(
                bundle_path=root,
                handler="handler.main",
                injections=(
                    "import os\n"
                    "os.environ['WRAPPED_BY_TEST'] = 'yes'\n",
                ),
            )
        )
        wrapper = _load_module(root / "server_index.py", "test_multiline")

        try:
            wrapper.handler({}, None)
            assert os.environ["WRAPPED_BY_TEST"] == "yes"
        finally:
            os.environ.pop("WRAPPED_BY_TEST", None)

    def test_original_handler_loaded_once(
        self, make_bundle: Callable[..., Path]
    ) -> None:
        root = make_bundle({"handler.py": self.HANDLER_SOURCE})
        wrap_handler(
            HandlerSpec(
                bundle_path=root,
                handler="handler.main",
                injections=("pass",),
            )
        )
        wrapper = _load_module(root / "server_index.py", "test_load_once")

        wrapper.handler(1, None)
        first = wrapper._raw_handler
        wrapper.handler(2, None)

        assert wrapper._raw_handler is first

    def test_streaming_rejected_for_python(
        self, make_bundle: Callable[..., Path]
    ) -> None:
        root = make_bundle({"handler.py": self.HANDLER_SOURCE})

        with pytest.raises(ValueError, match="Node.js"):
            generate_wrapper(
                HandlerSpec(
                    bundle_path=root,
                    handler="handler.main",
                    streaming=True,
                    injections=("pass",),
                )
            )
