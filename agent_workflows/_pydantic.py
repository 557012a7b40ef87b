# Copyright (c) Microsoft. All rights reserved.

from typing import Any, ClassVar

from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["AWBaseSettings"]


class AWBaseSettings(BaseSettings):
    """Base class for settings read from keyword arguments, the environment or a .env file.

    Subclasses set ``env_prefix`` as a class variable; every field is then looked up as
    ``<env_prefix><FIELD_NAME>`` (case insensitive). Keyword arguments passed as None are
    dropped so that the environment value or the field default applies instead.

    Keyword Args:
        env_file_path: Optional path to a .env file to read values from.
        env_file_encoding: Encoding of the .env file, defaults to 'utf-8'.
    """

    env_prefix: ClassVar[str] = ""

    model_config = SettingsConfigDict(
        extra="ignore",
        case_sensitive=False,
        validate_default=False,
    )

    def __init__(
        self,
        *,
        env_file_path: str | None = None,
        env_file_encoding: str | None = None,
        **kwargs: Any,
    ) -> None:
        kwargs = {key: value for key, value in kwargs.items() if value is not None}
        super().__init__(
            _env_file=env_file_path,
            _env_file_encoding=env_file_encoding or "utf-8",
            _env_prefix=type(self).env_prefix,
            **kwargs,
        )
