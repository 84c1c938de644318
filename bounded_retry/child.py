"""Child-process entry point for isolated attempts.

Run as ``python -m bounded_retry.child package.module:function``. The
process completes the startup handshake with its parent, imports the
target, calls it with no arguments and exits:

- 0 when the target returns normally
- 1 when the target raises (traceback on stderr)
- 3 when the target cannot be imported
"""

from __future__ import annotations

import importlib
import sys
import traceback
from collections.abc import Callable
from typing import Any

from bounded_retry.core.isolation import (
    EXIT_TARGET_UNAVAILABLE,
    await_handshake,
    current_attempt,
    is_isolated_child,
)

__all__ = [
    "await_handshake",
    "current_attempt",
    "is_isolated_child",
    "load_target",
    "main",
]

EXIT_PASSED = 0
EXIT_FAILED = 1


def load_target(target: str) -> Callable[[], Any]:
    """Import a "module:qualname" target.

    Raises:
        ImportError: If the module or attribute cannot be found
        TypeError: If the resolved object is not callable

    """
    module_name, sep, qualname = target.partition(":")
    if not sep or not module_name or not qualname:
        raise ImportError(f"Invalid target {target!r}, expected 'module:function'")

    obj: Any = importlib.import_module(module_name)
    for attr in qualname.split("."):
        try:
            obj = getattr(obj, attr)
        except AttributeError as e:
            raise ImportError(f"{module_name} has no attribute {qualname!r}") from e

    if not callable(obj):
        raise TypeError(f"{target} is not callable")
    return obj


def main(argv: list[str] | None = None) -> int:
    """Run one isolated attempt of a target.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Process exit code

    """
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 1:
        print("usage: python -m bounded_retry.child module:function", file=sys.stderr)
        return EXIT_TARGET_UNAVAILABLE

    try:
        func = load_target(args[0])
    except (ImportError, TypeError) as e:
        print(f"cannot load target {args[0]}: {e}", file=sys.stderr)
        return EXIT_TARGET_UNAVAILABLE

    await_handshake()

    try:
        func()
    except (KeyboardInterrupt, SystemExit):
        raise
    except BaseException:
        traceback.print_exc()
        sys.stderr.flush()
        return EXIT_FAILED

    sys.stdout.flush()
    return EXIT_PASSED


if __name__ == "__main__":
    sys.exit(main())
