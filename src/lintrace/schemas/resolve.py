"""Configuration resolution and merging logic.

This module provides the single entrypoint for configuration resolution:
resolve_config(). It merges ParamConfig and UserConfig in the correct
precedence order and returns a validated InternalConfig.

Precedence (highest to lowest):
1. UserConfig (user overrides)
2. ParamConfig (expert defaults)
"""

from typing import Union, Optional
from pydantic import ValidationError
from lintrace.contracts.failure import ConfigError
from lintrace.schemas.param import ParamConfig
from lintrace.schemas.user import UserConfig
from lintrace.schemas.internal import InternalConfig


def deep_merge(base: dict, *overrides: dict) -> dict:
    """Deep merge multiple dictionaries.

    Later dictionaries override earlier ones. Nested dictionaries are
    merged recursively; other values are replaced.

    Parameters
    ----------
    base : dict
        Base dictionary (lowest priority)
    *overrides : dict
        Override dictionaries (higher priority, left to right)

    Returns
    -------
    dict
        Merged dictionary

    Examples
    --------
    >>> base = {"a": 1, "b": {"c": 2, "d": 3}}
    >>> override = {"b": {"d": 4, "e": 5}, "f": 6}
    >>> deep_merge(base, override)
    {'a': 1, 'b': {'c': 2, 'd': 4, 'e': 5}, 'f': 6}
    """
    result = base.copy()

    for override in overrides:
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = deep_merge(result[key], value)
            else:
                result[key] = value

    return result


def resolve_config(
    param_cfg: Union[dict, ParamConfig, None] = None,
    user_cfg: Optional[Union[dict, UserConfig]] = None,
) -> InternalConfig:
    """Resolve final runtime configuration from param and user configs.

    This is the SINGLE ENTRYPOINT for configuration resolution. It validates
    and merges configs in the correct precedence order, then returns an
    immutable InternalConfig for runtime use.

    The merged values are re-validated against ParamConfig, so user
    overrides are held to the same range constraints as the defaults.

    Parameters
    ----------
    param_cfg : dict or ParamConfig, optional
        Expert configuration with complete defaults. None uses ParamConfig().
    user_cfg : dict or UserConfig, optional
        User configuration with overrides. If None or empty, uses only param defaults.

    Returns
    -------
    InternalConfig
        Fully validated, immutable runtime configuration

    Raises
    ------
    ConfigError
        If any config fails validation (wraps the pydantic ValidationError)

    Examples
    --------
    >>> from lintrace.schemas import resolve_config, ParamConfig, UserConfig
    >>>
    >>> config = resolve_config(ParamConfig(), UserConfig(NUM_DRAWS=50, SEED=7))
    >>> config.clustering.num_draws
    50
    >>> config.clustering.cut_height
    0.4
    """
    try:
        if param_cfg is None:
            param = ParamConfig()
        elif not isinstance(param_cfg, ParamConfig):
            param = ParamConfig.model_validate(param_cfg)
        else:
            param = param_cfg

        if user_cfg is None or (isinstance(user_cfg, dict) and not user_cfg):
            user = UserConfig()
        elif not isinstance(user_cfg, UserConfig):
            user = UserConfig.model_validate(user_cfg)
        else:
            user = user_cfg

        # Deep merge: param < user
        merged = deep_merge(param.model_dump(), user.to_internal_overrides())
        checked = ParamConfig.model_validate(merged).model_dump()

        clustering = checked["clustering"]
        if clustering["cut_height"] is None:
            clustering["cut_height"] = round(1.0 - clustering["stability_threshold"], 12)

        return InternalConfig.model_validate(checked)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration:\n{exc}") from exc
