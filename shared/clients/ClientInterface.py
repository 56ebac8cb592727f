from abc import ABC, abstractmethod
from typing import Any

import httpx

from shared.errors import NotConfiguredError, TransientProviderError
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class ClientInterface(ABC):
    """Base class of every remote backend client (embedding provider, vector index, source store).

    Subclasses declare their engine name, required configuration, auth header and endpoints;
    this class owns the httpx.AsyncClient lifecycle and the request/error plumbing.
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self.timeout = helper_config.get_number_val(f"{self.get_client_type().upper()}_TIMEOUT", default=30.0)

        # client and config
        self._client: httpx.AsyncClient | None = None
        self.validate_full_configuration()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def validate_full_configuration(self) -> None:
        """
        Validates that all required configuration values for the client are set and valid.

        Raises:
            ValueError: If any required configuration value is missing or invalid.
        """
        for config in self._get_required_config():
            _ = self.get_config_val(raw_key=config.env_key, default=config.default, val_type=config.val_type)

    def is_booted(self) -> bool:
        return self._client is not None

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def get_client_type(self) -> str:
        """
        Returns the type of the client in lowercase. E.g. "rag"
        """
        return self._get_client_type().lower()

    @abstractmethod
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "rag"
        """
        pass

    def get_engine_name(self) -> str:
        """
        Returns the name of the engine used by the client. E.g. "upstash"
        """
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        """
        Returns the name of the engine used by the client. E.g. "Upstash"
        """
        pass

    ################ CONFIG ##################
    @abstractmethod
    def _get_required_config(self) -> list[EnvConfig]:
        """
        Returns all required configurations for the client.

        Returns:
            list[EnvConfig]: A list containing the details of each required configuration key.
        """
        pass

    def _get_config_key_name(self, raw_key: str) -> str:
        """
        Returns:
            str: The full configuration key name for the client. E.g. "RAG_UPSTASH_BASE_URL"
        """
        key_prefix = f"{self.get_client_type().upper()}_{self.get_engine_name().upper()}"
        return f"{key_prefix}_{raw_key.upper()}"

    def get_config_val(self, raw_key: str, default: Any = None, val_type: str = "string") -> Any:
        """
        Retrieves the value of a configuration key for the client.

        Args:
            raw_key (str): The raw configuration key name
            default (Any): The default value to return if the configuration key is not set
            val_type (str): The type of the configuration value ("string", "number", "bool", "list")

        Raises:
            ValueError: If the key is required but unset, or val_type is unknown.
        """
        key = self._get_config_key_name(raw_key)
        if val_type == "string":
            return self._helper_config.get_string_val(key, default=default)
        elif val_type == "number":
            return self._helper_config.get_number_val(key, default=default)
        elif val_type == "bool":
            return self._helper_config.get_bool_val(key, default=default)
        elif val_type == "list":
            return self._helper_config.get_list_val(key, default=default)
        else:
            raise ValueError(f"Unsupported config value type '{val_type}' for env key '{raw_key}' in {self.get_client_type().upper()} client '{self.get_engine_name()}'.")

    ################ AUTH ##################
    @abstractmethod
    def _get_auth_header(self) -> dict:
        """
        Returns the authentication header for the backend, if an API key is set.

        Returns:
            dict: A dictionary containing the auth data
        """
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_base_url(self) -> str:
        """
        Returns the base URL of the backend (e.g. "https://my-index.upstash.io").
        """
        pass

    @abstractmethod
    def _get_endpoint_healthcheck(self) -> str:
        """
        Returns the endpoint path for healthcheck requests (e.g. "/info").
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_healthcheck(self) -> httpx.Response:
        """Check that the backend is reachable and accepts our credentials.

        Returns:
            httpx.Response: The response from the healthcheck request.

        Raises:
            TransientProviderError: If the backend is unreachable or answers with an error status.
        """
        return await self.do_request(method="GET", endpoint=self._get_endpoint_healthcheck(), raise_on_error=True)

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Initialise the HTTP client.

        Args:
            transport (httpx.AsyncBaseTransport | None): Optional transport override, e.g. httpx.MockTransport in tests.
        """
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=transport)

    async def close(self) -> None:
        """Close the HTTP client and any other resources."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _url(self, endpoint: str) -> str:
        path = endpoint.strip().lstrip("/")
        base = self._get_base_url().rstrip("/")
        return f"{base}/{path}" if path else base

    async def do_request(
        self,
        method: str = "GET",
        content: bytes | str | None = None,
        json: Any = None,
        params: dict | None = None,
        endpoint: str = "",
        additional_headers: dict | None = None,
        raise_on_error: bool = False,
    ) -> httpx.Response:
        """Send an HTTP request to the backend.

        Raw ``content`` wins over ``json`` when both are given. Transport
        failures always raise; error statuses only with ``raise_on_error``.

        Args:
            method: HTTP method.
            content: Raw body.
            json: JSON-serialisable body.
            params: URL query parameters.
            endpoint: Path below the base URL, leading slash optional.
            additional_headers: Headers merged over the auth header.
            raise_on_error: Raise TransientProviderError on a status >= 300.

        Raises:
            NotConfiguredError: If the client has not been booted.
            TransientProviderError: On transport failures, or on error statuses when raise_on_error is True.
        """
        if self._client is None:
            raise NotConfiguredError(f"{self.get_client_type()} client '{self.get_engine_name()}' is not booted")

        url = self._url(endpoint)
        headers = {**self._get_auth_header(), **(additional_headers or {})}
        body = {"content": content} if content is not None else {"json": json} if json is not None else {}

        try:
            response = await self._client.request(method, url, headers=headers, params=params, timeout=self.timeout, **body)
        except httpx.HTTPError as exc:
            self.logging.error("%s %s failed: %s", method, url, exc)
            raise TransientProviderError(f"{method} {url} failed: {exc}") from exc

        if raise_on_error and response.status_code >= 300:
            self.logging.error("%s %s answered %d: %s", method, url, response.status_code, response.text[:500])
            raise TransientProviderError(
                f"{method} {url} answered with status {response.status_code}", status_code=response.status_code,
            )
        return response
