"""Import-string resolution — ``"module:attribute"`` to Python objects.

Shared by the dispatcher (string handler references), the middleware
pipeline (string alias targets), and the route snapshot (which stores
handlers by import string).
"""

import importlib
from typing import Any


def import_string(import_path: str) -> Any:
    """Resolve ``"package.module:attr.sub"`` to the object it names.

    The attribute part may be dotted to reach class members
    (``"app.controllers:UserController.show"`` yields the function
    ``UserController.show``).

    Raises:
        ValueError: If *import_path* has no ``:`` separator.
        ModuleNotFoundError: If the module cannot be imported.
        AttributeError: If an attribute along the path does not exist.
    """
    module_path, sep, attr_path = import_path.partition(":")
    if not sep or not module_path or not attr_path:
        msg = f"Import string {import_path!r} must look like 'module:attribute'"
        raise ValueError(msg)

    obj: Any = importlib.import_module(module_path)
    for attr in attr_path.split("."):
        obj = getattr(obj, attr)
    return obj


def split_owner(import_path: str) -> tuple[str, str | None]:
    """Split ``"module:Class.method"`` into ``("module:Class", "method")``.

    Returns ``(import_path, None)`` when the attribute part is not dotted.
    """
    module_path, _, attr_path = import_path.partition(":")
    owner, dot, member = attr_path.rpartition(".")
    if not dot:
        return import_path, None
    return f"{module_path}:{owner}", member


def object_path(obj: Any) -> str | None:
    """Return the ``"module:qualname"`` import string for *obj*.

    Returns ``None`` when *obj* cannot be re-imported by that string
    (lambdas, functions defined inside other functions, bound methods
    of instances).
    """
    module = getattr(obj, "__module__", None)
    qualname = getattr(obj, "__qualname__", None)
    if not module or not qualname or "<" in qualname:
        return None
    if getattr(obj, "__self__", None) is not None and not isinstance(obj.__self__, type):
        return None
    return f"{module}:{qualname}"
