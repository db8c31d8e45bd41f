"""
Handler wrapping for injected startup code.

When a function has injections (tracing setup, polyfills, ...), a small entry
module is generated beside the original handler. It runs the injected source
in order, lazily loads the original handler and forwards the invocation to it
unchanged. Without injections the original handler reference is returned and
nothing is written.
"""

import logging
import posixpath
import textwrap
from pathlib import Path
from typing import Sequence

from lambda_deploy.errors import BundleIOError
from lambda_deploy.types import EntryReference, HandlerSpec, RewrittenEntry

logger = logging.getLogger(__name__)

WRAPPER_SYMBOL = "handler"
NODE_WRAPPER_MODULE = "server-index"
NODE_WRAPPER_EXT = ".mjs"
PYTHON_WRAPPER_MODULE = "server_index"

_NODE_EXTENSIONS = (".mjs", ".js", ".cjs")


def _node_source(
    spec: HandlerSpec, original_ext: str, injections: Sequence[str]
) -> str:
    body = "\n".join(
        textwrap.indent(snippet, "  ") for snippet in injections
    )
    load = (
        f"  const {{ {spec.exported_symbol}: rawHandler }} = "
        f'await import("./{spec.module_name}{original_ext}");'
    )
    if spec.streaming:
        lines = [
            f"export const {WRAPPER_SYMBOL} = awslambda.streamifyResponse("
            "async (event, responseStream, context) => {",
            body,
            load,
            "  return rawHandler(event, responseStream, context);",
            "});",
        ]
    else:
        lines = [
            f"export const {WRAPPER_SYMBOL} = async (event, context) => {{",
            body,
            load,
            "  return rawHandler(event, context);",
            "};",
        ]
    return "\n".join(lines) + "\n"


def _python_source(spec: HandlerSpec, injections: Sequence[str]) -> str:
    body = "\n".join(
        textwrap.indent(textwrap.dedent(snippet).strip("\n"), "    ")
        for snippet in injections
    )
    return f'''import importlib.util
import os

_raw_handler = None


def _load_raw_handler():
    global _raw_handler
    if _raw_handler is None:
        path = os.path.join(
            os.path.dirname(os.path.abspath(__file__)), "{spec.module_name}.py"
        )
        spec = importlib.util.spec_from_file_location("{spec.module_name}", path)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        _raw_handler = getattr(module, "{spec.exported_symbol}")
    return _raw_handler


def {WRAPPER_SYMBOL}(event, context):
{body}
    return _load_raw_handler()(event, context)
'''


def _original_extension(handler_dir: Path, module_name: str) -> str:
    for ext in (".py",) + _NODE_EXTENSIONS:
        if (handler_dir / f"{module_name}{ext}").exists():
            return ext
    return NODE_WRAPPER_EXT


def generate_wrapper(spec: HandlerSpec) -> RewrittenEntry:
    """
    Write the wrapper module for a handler with injections.

    Args:
        spec: The original handler and the injections to run before it

    Returns:
        The generated module name, symbol and path

    Raises:
        ValueError: If the handler reference is malformed or streaming is
            requested for a Python handler
        BundleIOError: If the wrapper cannot be written
    """
    if not spec.exported_symbol:
        raise ValueError(
            f"Handler '{spec.handler}' must look like '<module>.<function>'"
        )

    handler_dir = Path(spec.bundle_path) / spec.entry_dir
    original_ext = _original_extension(handler_dir, spec.module_name)

    if original_ext == ".py":
        if spec.streaming:
            raise ValueError(
                "Response streaming requires a Node.js handler, "
                f"got '{spec.handler}'"
            )
        module_name = PYTHON_WRAPPER_MODULE
        path = handler_dir / f"{module_name}.py"
        source = _python_source(spec, spec.injections)
    else:
        module_name = NODE_WRAPPER_MODULE
        path = handler_dir / f"{module_name}{NODE_WRAPPER_EXT}"
        source = _node_source(spec, original_ext, spec.injections)

    try:
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(source)
    except OSError as e:
        raise BundleIOError(
            f"Failed to write handler wrapper {path}: {e}",
            resource_name=spec.handler,
        ) from e

    logger.info(
        "Wrapped handler %s with %d injection(s) -> %s",
        spec.handler,
        len(spec.injections),
        path,
    )
    return RewrittenEntry(
        module_name=module_name, exported_symbol=WRAPPER_SYMBOL, path=path
    )


def wrap_handler(spec: HandlerSpec) -> EntryReference:
    """
    Return the entry reference the function should be configured with.

    Without injections this is the original handler and no file is written.
    With injections it points at the generated wrapper, which is always
    ``<handler dir>/server-index.handler`` (``server_index`` for Python).
    """
    if not spec.injections:
        return spec.handler

    rewritten = generate_wrapper(spec)
    return posixpath.join(
        spec.entry_dir, f"{rewritten.module_name}.{rewritten.exported_symbol}"
    )
