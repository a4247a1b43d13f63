# dynajournal/common/base/base_config.py
# =============================================================================
# BaseConfig - Foundation for all journal configuration classes
#
# Pydantic v2 settings conventions:
# - SettingsConfigDict (not deprecated class Config)
# - Automatic .env file loading
# - Case-insensitive environment variables
# - Nested config support via __ delimiter
# - SecretStr for sensitive values
# - @lru_cache singleton pattern for factory functions
#
# Usage:
#     from dynajournal.common.base.base_config import BaseConfig, BASE_CONFIG_DICT
#     from pydantic_settings import SettingsConfigDict
#
#     class MyConfig(BaseConfig):
#         model_config = SettingsConfigDict(
#             **BASE_CONFIG_DICT,
#             env_prefix="MY_"
#         )
#         api_key: SecretStr
#         timeout_ms: int = 5000
# =============================================================================

from typing import Any, Dict

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_CONFIG_DICT: Dict[str, Any] = dict(
    env_file=".env",
    env_file_encoding="utf-8",
    case_sensitive=False,
    extra="ignore",
    env_nested_delimiter="__",
)


class BaseConfig(BaseSettings):
    """Base configuration class for all journal configs.

    Environment Variable Naming:
    - Use domain-specific prefixes (DYNAMODB_JOURNAL_, RELIABILITY_, ...)
    - Nested values use __ delimiter

    Secrets Handling:
    - All sensitive fields (credentials) use SecretStr
    - SecretStr masks values in logs: SecretStr('**********')
    - Access raw value via .get_secret_value() when needed
    """

    model_config = SettingsConfigDict(**BASE_CONFIG_DICT)

    def to_dict(self, mask_secrets: bool = True) -> Dict[str, Any]:
        """Convert config to dictionary.

        Args:
            mask_secrets: If True (default), SecretStr values are masked.
                         If False, raw values are exposed (use with caution).
        """
        data = {}
        for field_name in type(self).model_fields:
            value = getattr(self, field_name)
            if isinstance(value, SecretStr):
                data[field_name] = str(value) if mask_secrets else value.get_secret_value()
            elif hasattr(value, "value"):
                # Enums render as their plain value
                data[field_name] = value.value
            else:
                data[field_name] = value
        return data

    def describe(self) -> str:
        """Render config as `key:value` pairs for startup logging (secrets masked)."""
        return ", ".join(f"{k}:{v}" for k, v in self.to_dict(mask_secrets=True).items())

    def __repr__(self) -> str:
        """Safe repr that masks secrets."""
        class_name = self.__class__.__name__
        fields = []
        for field_name in type(self).model_fields:
            value = getattr(self, field_name)
            if isinstance(value, SecretStr):
                fields.append(f"{field_name}=SecretStr('**********')")
            else:
                fields.append(f"{field_name}={value!r}")
        return f"{class_name}({', '.join(fields)})"
