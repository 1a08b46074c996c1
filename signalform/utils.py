"""Equality and snapshot helpers shared by the form, its history and its cells.

Form values are plain Python data: scalars, dates, Decimals, and nested
dicts, lists, tuples and sets. Users may build structures that reference
themselves, so both helpers here terminate on cycles.
"""

import copy
from collections.abc import Mapping
from dataclasses import fields as dataclass_fields, is_dataclass
from numbers import Number
from typing import Any, Optional, Set, Tuple, TypeVar

T = TypeVar("T")


def is_empty(value: Any) -> bool:
    """Whether a value counts as "not provided" (None or empty string).

    Examples:
        >>> is_empty(None), is_empty(""), is_empty(0), is_empty([])
        (True, True, False, False)
    """
    return value is None or (isinstance(value, str) and value == "")


def _is_plain_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def deep_equal(a: Any, b: Any, _visited: Optional[Set[Tuple[int, int]]] = None) -> bool:
    """Structural equality that terminates on self-referential values.

    Mappings compare by keys and values, lists and tuples element-wise (a
    list never equals a tuple), dataclass instances field by field. Numbers
    compare by value across int, float and Decimal, but booleans only equal
    booleans. Everything else falls back to ``type(a) is type(b) and a == b``.

    A pair of containers already under comparison higher up the stack is
    assumed equal, which is what makes cyclic structures terminate.

    Examples:
        >>> deep_equal({"a": [1, 2]}, {"a": [1, 2]})
        True
        >>> deep_equal(1, True)
        False
        >>> x = []; x.append(x)
        >>> y = []; y.append(y)
        >>> deep_equal(x, y)
        True
    """
    if a is b:
        return True
    if a is None or b is None:
        return False
    if _is_plain_number(a) and _is_plain_number(b):
        return bool(a == b)

    if _visited is None:
        _visited = set()
    key = (id(a), id(b))

    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if key in _visited:
            return True
        if len(a) != len(b):
            return False
        _visited.add(key)
        for k in a:
            if k not in b:
                return False
            if not deep_equal(a[k], b[k], _visited):
                return False
        return True

    if type(a) is not type(b):
        return False

    if isinstance(a, (list, tuple)):
        if key in _visited:
            return True
        if len(a) != len(b):
            return False
        _visited.add(key)
        return all(deep_equal(x, y, _visited) for x, y in zip(a, b))

    if is_dataclass(a) and not isinstance(a, type):
        if key in _visited:
            return True
        _visited.add(key)
        return all(
            deep_equal(getattr(a, f.name), getattr(b, f.name), _visited)
            for f in dataclass_fields(a)
        )

    try:
        return bool(a == b)
    except RecursionError:
        return False


def deep_clone(value: T) -> T:
    """Return an independent snapshot of ``value``.

    Nested containers are copied recursively and shared or self-referencing
    sub-objects keep their shape (``copy.deepcopy`` memoizes by identity), so
    later mutation of the original never reaches the copy.
    """
    return copy.deepcopy(value)


__all__ = [
    "is_empty",
    "deep_equal",
    "deep_clone",
]
