"""
CapsLock-lite — a run-time Aliasing XOR Mutability monitor.

  Shared  : read-only, any number of aliases.
  Mutable : write access, exclusive once used.

| Layer                          | Purpose                                   |
<------------------------------- + ------------------------------------------>
| **Borrow tree**                | Arena of pointer derivations + liveness   |
| **Shadow map**                 | Observed address → borrow node            |
| **Reference monitor**          | Lazy, on-use revocation algebra           |
| **Instrumentation façade**     | Thread-local track_* / check_access       |
| **Tagged allocations**         | Per-allocation tag for foreign code       |
| **Trace replay**               | Inline / JSON event scripts               |
| **Visualization**              | NetworkX / Graphviz borrow forest         |
| **Verdict logbook**            | Signed record of replay outcomes          |
"""

from . import core as _core
from . import shadow as _shadow
from . import violations as _violations
from . import reference as _reference
from . import instrumentation as _instrumentation
from . import events as _events
from . import analysis as _analysis
from . import crypto as _crypto
from . import scenarios as _scenarios
from .cli import main, parse_args
from ..constants import KEY_FILE, LOGBOOK_FILE, PUB_FILE
from ..ffi import (
    TAGGED_ALLOCATIONS,
    TaggedAllocation,
    TaggedAllocationMap,
    capslock_check,
    capslock_register,
    capslock_revoke,
    clear_tagged_allocations,
    foreign_callbacks,
)

from .core import *
from .shadow import *
from .violations import *
from .reference import *
from .instrumentation import *
from .events import *
from .analysis import *
from .crypto import *
from .scenarios import *

__all__ = []
for module in (
    _core,
    _shadow,
    _violations,
    _reference,
    _instrumentation,
    _events,
    _analysis,
    _crypto,
    _scenarios,
):
    __all__.extend(getattr(module, "__all__", []))
__all__ += [
    "main",
    "parse_args",
    "TAGGED_ALLOCATIONS",
    "TaggedAllocation",
    "TaggedAllocationMap",
    "capslock_check",
    "capslock_register",
    "capslock_revoke",
    "clear_tagged_allocations",
    "foreign_callbacks",
    "KEY_FILE",
    "LOGBOOK_FILE",
    "PUB_FILE",
]
__all__ = list(dict.fromkeys(__all__))
