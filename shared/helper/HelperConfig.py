"""Central configuration helper for the embedding sync engine.

Every setting lives in an environment variable. Missing required values
raise ValueError so misconfiguration surfaces at boot, not mid-sync.
"""

import logging
import os


class HelperConfig:
    """Reads typed settings from environment variables and hands out the shared logger."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    ##########################################
    ################ READERS #################
    ##########################################

    def _read_raw(self, key: str) -> str | None:
        """Return the stripped raw value of an environment variable, or None if unset or blank."""
        raw = os.getenv(key.upper())
        if raw is None or not raw.strip():
            return None
        return raw.strip()

    def _missing(self, key: str) -> ValueError:
        return ValueError(f"Environment variable '{key.upper()}' is not set.")

    def get_string_val(self, key: str, default: str | None = None) -> str:
        """Read a string environment variable.

        Args:
            key (str): Environment variable name (case-insensitive).
            default (str | None): Fallback value if the variable is not set.

        Returns:
            str: The resolved value.

        Raises:
            ValueError: If the variable is not set and no default is provided.
        """
        val = self._read_raw(key)
        if val is None:
            if default is None:
                raise self._missing(key)
            return default
        return val

    def get_optional_string_val(self, key: str) -> str | None:
        """Read a string environment variable that is allowed to be absent.

        Used for capability switches such as RAG_ENGINE, where absence means
        "feature unavailable" rather than "misconfigured".
        """
        return self._read_raw(key)

    def get_number_val(self, key: str, default: float | int | None = None) -> float | int:
        """Read a numeric environment variable.

        Args:
            key (str): Environment variable name (case-insensitive).
            default (float | int | None): Fallback value if the variable is not set.

        Returns:
            float | int: int when the value has no decimal point, float otherwise.

        Raises:
            ValueError: If the variable is not set and no default is provided,
                or if the value cannot be parsed as a number.
        """
        raw = self._read_raw(key)
        if raw is None:
            if default is None:
                raise self._missing(key)
            return default
        try:
            return int(raw) if "." not in raw else float(raw)
        except ValueError:
            raise ValueError(f"Environment variable '{key.upper()}' is not a valid number: '{raw}'.")

    def get_bool_val(self, key: str, default: bool | None = None) -> bool:
        """Read a boolean environment variable ("true", "1" and "yes" are truthy)."""
        raw = self._read_raw(key)
        if raw is None:
            if default is None:
                raise self._missing(key)
            return default
        return raw.lower() in ("true", "1", "yes")

    def get_list_val(self, key: str, default: list | None = None, separator: str = ",", element_type: type = str) -> list:
        """Read a list environment variable in the form "[elem1,elem2,...]".

        Args:
            key (str): Environment variable name (case-insensitive).
            default (list | None): Fallback value if the variable is not set.
            separator (str): The delimiter between elements.
            element_type (type): The type each element is cast to.

        Returns:
            list: The resolved list of elements.

        Raises:
            ValueError: If the variable is not set and no default is provided,
                if it is not bracketed, or if an element cannot be cast.
        """
        raw = self._read_raw(key)
        if raw is None:
            if default is None:
                raise self._missing(key)
            return default
        if not raw.startswith("[") or not raw.endswith("]"):
            raise ValueError(f"Environment variable '{key.upper()}' must be in the format '[elem1{separator}elem2{separator}...]'. Got: '{raw}'")
        elements = [v.strip() for v in raw[1:-1].split(separator) if v.strip()]
        try:
            return [element_type(elem) for elem in elements]
        except ValueError as e:
            raise ValueError(f"Environment variable '{key.upper()}' contains invalid elements: {e}. Type set to {element_type.__name__}.")

    def get_logger(self) -> logging.Logger:
        """Return the application logger.

        Returns:
            logging.Logger: The configured logger instance.
        """
        return self._logger
