"""
Configuration Management for Budget Blocks

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The core itself has no external services, so configuration is limited to
where state is persisted and a handful of behavioural knobs.
"""

from functools import lru_cache

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


ATTRIBUTION_RULES = ("end-month", "start-month", "shift-plus-1")


class StorageSettings(BaseSettings):
    """Persistence backend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BUDGET_BLOCKS_STORAGE_",
        extra="ignore"
    )

    path: str = Field(
        default="budget-blocks-storage.json",
        description="Path of the JSON document holding the persisted state"
    )
    storage_key: str = Field(
        default="budget-blocks-storage",
        description="Logical name of the persisted state document"
    )
    write_through: bool = Field(
        default=True,
        description="Save the full state after every successful mutation"
    )
    indent: int = Field(
        default=2,
        ge=0,
        le=8,
        description="JSON indentation used for the persisted document"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured log output"
    )

    # Undo history
    undo_history_limit: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Maximum number of undoable deletes kept in history"
    )

    # Defaults for new entities
    default_currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="Currency assigned to bases created without one"
    )
    default_attribution_rule: str = Field(
        default="end-month",
        description="Attribution rule for bands created without one"
    )
    base_types: str = Field(
        default="Checking,Savings,Credit,Loan,Vault,Goal",
        description="Comma-separated default base types"
    )
    flow_types: str = Field(
        default="Transfer,Payment,Expense,Reimbursement",
        description="Comma-separated default flow row types"
    )

    @field_validator('default_attribution_rule')
    @classmethod
    def validate_attribution_rule(cls, v: str) -> str:
        if v not in ATTRIBUTION_RULES:
            raise ValueError(
                f"Unknown attribution rule: {v}. Allowed: {', '.join(ATTRIBUTION_RULES)}"
            )
        return v

    @field_validator('log_level')
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.strip().upper()

    @property
    def base_types_list(self) -> list[str]:
        """Get default base types as a list."""
        return [t.strip() for t in self.base_types.split(",") if t.strip()]

    @property
    def flow_types_list(self) -> list[str]:
        """Get default flow types as a list."""
        return [t.strip() for t in self.flow_types.split(",") if t.strip()]


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()



def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus "<name>_error"
    messages for the ones that failed. Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("storage", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValidationError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
