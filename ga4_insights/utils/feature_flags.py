"""
Simple feature flags implementation for the GA4 Insights Copilot.
"""
import os
from typing import Dict

__all__ = ["FEATURE_FLAGS", "init_feature_flags", "is_feature_enabled"]

# Global feature flags dictionary
FEATURE_FLAGS: Dict[str, bool] = {
    "use_ga4_api": True,
    "use_secondary_metrics": True,
    "use_breakdown_reports": True,
    "use_historical_data": True,
}


def init_feature_flags() -> None:
    """Initialize feature flags from environment variables."""
    for flag_name in FEATURE_FLAGS:
        env_var_name = f"ENABLE_{flag_name.upper()}"
        FEATURE_FLAGS[flag_name] = os.getenv(env_var_name, "true").lower() == "true"


def is_feature_enabled(feature_name: str) -> bool:
    """Check if a feature is enabled."""
    return FEATURE_FLAGS.get(feature_name, False)
