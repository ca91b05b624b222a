"""Default configuration values."""

from .model import *  # noqa: F401,F403
from .model import __all__ as _model_all
from .server import *  # noqa: F401,F403
from .server import __all__ as _server_all

__all__ = [*_model_all, *_server_all]
