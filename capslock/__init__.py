"""Internal modules that back the public :mod:`capslock` API."""

from . import constants as _constants
from . import monitor as _monitor
from . import ffi as _ffi
from .constants import *  # noqa: F401,F403
from .monitor import *  # noqa: F401,F403
from .ffi import *  # noqa: F401,F403

__all__ = []
__all__ += getattr(_constants, "__all__", [])
__all__ += getattr(_monitor, "__all__", [])
__all__ += getattr(_ffi, "__all__", [])
__all__ = list(dict.fromkeys(__all__))
