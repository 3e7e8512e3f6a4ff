"""
Controller config loading.

The controller config is YAML; the password policy lives under the
``passwordConfig`` key::

    passwordConfig:
      passwordComplexity: enabled
      minPasswordLength: "15"
      passwordRotationPeriod: "60"
"""
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import ValidationError

from dbclaim.config.logging import get_logger
from dbclaim.exceptions import ConfigurationError
from dbclaim.models.claim import PasswordConfig

logger = get_logger(__name__)


def parse_controller_config(content: Union[str, bytes]) -> PasswordConfig:
    """
    Parse controller config YAML into a password policy.

    A missing ``passwordConfig`` block yields the default policy.

    Raises:
        ConfigurationError: If the YAML or the policy block is malformed
    """
    try:
        data = yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid controller config YAML: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError("Controller config must be a mapping")

    block = data.get("passwordConfig") or {}
    try:
        return PasswordConfig.model_validate(block)
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid passwordConfig",
            details={"errors": e.errors(include_url=False)},
        )


def load_controller_config(path: Optional[str]) -> PasswordConfig:
    """Load the password policy from a YAML file, or the default policy when no path is given."""
    if not path:
        logger.info("controller_config_defaulted")
        return PasswordConfig()

    config = parse_controller_config(Path(path).read_text())
    logger.info(
        "controller_config_loaded",
        path=path,
        password_complexity=config.password_complexity.value,
        min_password_length=config.min_password_length,
        password_rotation_period=config.password_rotation_period,
    )
    return config
