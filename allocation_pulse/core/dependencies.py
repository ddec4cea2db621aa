"""
FastAPI dependency injection module for the Allocation Pulse backend.

Provides reusable FastAPI dependencies for configuration access so endpoint
handlers never import the settings singleton directly. This keeps handlers
testable: tests either pass a Settings instance explicitly or install an
override on the app.

Key Dependencies Provided:
- get_settings_dependency: Returns the cached Settings singleton
- SettingsDep: Type alias for injecting Settings into endpoints

Usage Examples:
    @router.get("/analysis/defaults")
    async def defaults(settings: SettingsDep) -> AnalysisParams:
        return AnalysisParams.from_settings(settings)
"""

from typing import Annotated

from fastapi import Depends

from allocation_pulse.core.config import Settings, get_settings


# =============================================================================
# Settings Dependency
# =============================================================================

def get_settings_dependency() -> Settings:
    """
    Return the Settings singleton instance.

    This is a thin wrapper around get_settings() to enable FastAPI's
    dependency override mechanism for testing:

        app.dependency_overrides[get_settings_dependency] = lambda: Settings(bucket_minutes=30)

    Returns:
        Settings: The cached Settings instance with all configuration values.
    """
    return get_settings()


# =============================================================================
# Type Aliases for Dependency Injection
# =============================================================================

# Usage: async def endpoint(settings: SettingsDep)
SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]
