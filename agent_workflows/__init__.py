# Copyright (c) Microsoft. All rights reserved.

import importlib.metadata
from typing import Final

try:
    _version = importlib.metadata.version("agent-workflows")
except importlib.metadata.PackageNotFoundError:
    _version = "0.0.0"  # Fallback for development mode
__version__: Final[str] = _version

from ._logging import *  # noqa: F403
from ._types import *  # noqa: F403
from ._workflows import *  # noqa: F403
from .exceptions import *  # noqa: F403
from .observability import OBSERVABILITY_SETTINGS, ObservabilitySettings  # noqa: F401
