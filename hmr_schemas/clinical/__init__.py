from .common import *  # noqa: F401,F403
from .common import __all__ as _common_all

__all__ = list(_common_all)
