# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Type hints shared by the modules of this package. Intended to be star-imported."""

from typing import (
    Dict,
    List,
    Optional,
    Union,
    Any,
    Tuple,
    Set,
    Callable,
    Awaitable,
    Iterable,
    Iterator,
    AsyncIterator,
    AsyncIterable,
    AsyncContextManager,
    Mapping,
    MutableMapping,
    Sequence,
    TypeVar,
    Type,
    cast,
    overload,
    TYPE_CHECKING,
  )
from types import TracebackType
from typing_extensions import Self, Protocol

HostAndPort = Tuple[str, int]
"""An IPv4 address string and a UDP port number; e.g., ("192.168.1.20", 80)."""

Jsonable = Union[str, int, float, bool, None, Dict[str, Any], List[Any]]
"""A value that can be serialized to JSON."""

JsonableDict = Dict[str, Jsonable]
"""A JSON object."""

JsonableTypes = (str, int, float, bool, dict, list)
"""Runtime types that are JSON-able (None is checked separately)."""
