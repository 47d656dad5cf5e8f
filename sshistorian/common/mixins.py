"""
Mixins for common functionality.
"""

from __future__ import annotations

from typing import Any, ClassVar


class Configurable:
    """
    Mixin class for handling configuration overrides.

    Classes using this mixin should define a config attribute and can use
    apply_overrides to set attributes from override dict using config defaults.
    Attribute names map to the uppercase config attribute unless listed in
    ``config_aliases``.
    """

    config_aliases: ClassVar[dict[str, str]] = {}

    def apply_overrides(
        self,
        overrides: dict[str, Any],
        config_obj: Any,
        attr_list: list[str] | None = None,
    ) -> None:
        """
        Apply overrides to the instance using the config object as defaults.

        Sets self.attr = overrides.get(attr, config_obj.ATTR) for each attr in attr_list.

        Args:
            overrides: Dictionary of override values
            config_obj: Configuration object with uppercase attribute names
            attr_list: List of attribute names to set
        """
        if attr_list is None:
            attr_list = []

        unknown = set(overrides) - set(attr_list)
        if unknown:
            msg = f"Unknown override(s): {', '.join(sorted(unknown))}"
            raise TypeError(msg)

        for attr in attr_list:
            config_attr = self.config_aliases.get(attr, attr.upper())
            if overrides.get(attr) is not None:
                setattr(self, attr, overrides[attr])
            elif hasattr(config_obj, config_attr):
                setattr(self, attr, getattr(config_obj, config_attr))
