"""pypolyglot - Async Python interface between node servers and Polyglot."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pypolyglot")
except PackageNotFoundError:
    __version__ = "0+local"
from pypolyglot.config import InterfaceConfig, read_startup_params
from pypolyglot.events import ConfigUpdate, Event
from pypolyglot.exceptions import (
    ConfigLoopDetectedError,
    CorrelationRejectedError,
    CorrelationTimeoutError,
    PolyglotConfigError,
    PolyglotError,
    PolyglotProtocolError,
    PolyglotTransportError,
    UnknownNodeTypeError,
)
from pypolyglot.interface import Interface
from pypolyglot.log import configure_logging, ns_logger
from pypolyglot.models import ConfigSnapshot, NodeEntry, StartupParams
from pypolyglot.node import Driver, Node

__all__ = [
    "__version__",
    "ConfigLoopDetectedError",
    "ConfigSnapshot",
    "ConfigUpdate",
    "CorrelationRejectedError",
    "CorrelationTimeoutError",
    "Driver",
    "Event",
    "Interface",
    "InterfaceConfig",
    "Node",
    "NodeEntry",
    "PolyglotConfigError",
    "PolyglotError",
    "PolyglotProtocolError",
    "PolyglotTransportError",
    "StartupParams",
    "UnknownNodeTypeError",
    "configure_logging",
    "ns_logger",
    "read_startup_params",
]
