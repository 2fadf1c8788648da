"""Additional validation utilities for configuration."""

import warnings
from typing import Any, Dict, List


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """
    Check configuration for settings that are valid but probably unintended.

    Args:
        config_dict: Raw configuration dictionary

    Returns:
        List of warning messages
    """
    warning_messages = []

    scheduler = config_dict.get("scheduler", {})
    if isinstance(scheduler, dict) and scheduler.get("enabled") is False:
        warning_messages.append(
            "Scheduler polling is disabled; scheduled notifications will only be "
            "delivered by --run-once scheduled"
        )

    reengage = config_dict.get("reengage", {})
    if isinstance(reengage, dict):
        inactivity = reengage.get("inactivity_days", 7)
        cooldown = reengage.get("cooldown_days", 21)
        if isinstance(inactivity, int) and isinstance(cooldown, int) and cooldown < inactivity:
            warning_messages.append(
                f"reengage.cooldown_days ({cooldown}) is shorter than inactivity_days "
                f"({inactivity}); inactive users may be emailed on every run"
            )

    bulk = config_dict.get("bulk", {})
    if isinstance(bulk, dict):
        delay = bulk.get("default_delay_ms", 1000)
        batch_size = bulk.get("default_batch_size", 50)
        if delay == 0 and isinstance(batch_size, int) and batch_size > 10:
            warning_messages.append(
                f"bulk.default_delay_ms is 0 with batch size {batch_size}; "
                "bulk sends may exceed provider rate limits"
            )

    transport = config_dict.get("transport", {})
    if isinstance(transport, dict) and transport.get("use_tls") is False:
        warning_messages.append("transport.use_tls is disabled; credentials may be sent in clear")

    return warning_messages


def emit_warnings(warning_messages: List[str]) -> None:
    """Emit warning messages using Python's warnings module."""
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
