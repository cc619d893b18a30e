from __future__ import annotations

import importlib
from typing import Any, Mapping


def load_object(dotted: str) -> Any:
    """Load ``pkg.mod:ClassName`` or ``pkg.mod.ClassName`` objects dynamically."""

    if ":" in dotted:
        mod_name, obj_name = dotted.split(":", 1)
    else:
        mod_name, _, obj_name = dotted.rpartition(".")
    module = importlib.import_module(mod_name)
    return getattr(module, obj_name)


def instantiate(entry: Mapping[str, Any]) -> Any:
    """Build the backend named by ``entry["impl"]``, handing it the whole section."""

    if "impl" not in entry:
        raise ValueError("Config section is missing its 'impl' key.")
    cls = load_object(entry["impl"])
    return cls(dict(entry))
