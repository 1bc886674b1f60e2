"""Common infra helpers (logger, error handling, feature flags, OpenAI client).

Everything is re-exported so callers can simply do
``from ga4_insights.utils import get_logger, ApiError``.
"""

from .logging import *  # noqa: F401,F403
from .error_handler import *  # noqa: F401,F403
from .feature_flags import *  # noqa: F401,F403
