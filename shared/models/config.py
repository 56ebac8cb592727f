from pydantic import BaseModel


class EnvConfig(BaseModel):
    """
    A single environment setting a client needs before it can boot.

    The client prefixes env_key with its type and engine, so EnvConfig(env_key="BASE_URL")
    on the Upstash index client resolves RAG_UPSTASH_BASE_URL.

    Attributes:
        env_key (str): Key of the setting, without the client prefix.
        val_type (str): "string", "number", "bool" or "list".
        default (str | int | float | bool | list | None): Value used when the variable is unset. None marks the setting as required.
    """

    env_key: str
    val_type: str
    default: str | int | float | bool | list | None = None
