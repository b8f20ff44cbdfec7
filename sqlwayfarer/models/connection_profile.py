"""
Connection profile models for SQL Server connections
"""

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from sqlwayfarer.core.constants import DEFAULT_ENCRYPT, DEFAULT_TRUST_SERVER_CERTIFICATE
from sqlwayfarer.core.exceptions import ValidationError


class ConnectionProfile(BaseModel):
    """
    Named, non-secret SQL Server connection descriptor

    This is the shape persisted in the connection registry. It has no
    password field: unknown keys (including a stray ``password``) are
    dropped on validation, so a profile can never carry a secret.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra='ignore',
    )

    name: str = ""
    server: str = ""
    port: Optional[str] = None
    database: Optional[str] = None
    username: Optional[str] = None

    # Unset means "omit from the connection string"
    encrypt: Optional[bool] = None
    trust_server_certificate: Optional[bool] = None

    use_connection_string: bool = False
    connection_string: Optional[str] = None

    @field_validator('name', 'server', mode='before')
    @classmethod
    def strip_text(cls, v: Any) -> Any:
        if v is None:
            return ""
        return v.strip() if isinstance(v, str) else v

    @field_validator('port', mode='before')
    @classmethod
    def normalize_port(cls, v: Any) -> Any:
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, int):
            return str(v)
        if isinstance(v, str):
            return v.strip() or None
        return v

    @property
    def display_name(self) -> str:
        """Formatted display name"""
        if self.database:
            return f"{self.name} ({self.database})"
        return self.name

    def to_dict(self) -> dict:
        """Wire/persisted form: camelCase keys, unset fields omitted"""
        return self.model_dump(by_alias=True, exclude_none=True, mode='json')

    @classmethod
    def from_dict(cls, data: dict) -> 'ConnectionProfile':
        """Create from a persisted or UI dictionary"""
        return cls.model_validate(data)


class ConnectionConfig(ConnectionProfile):
    """
    A profile as submitted for save/test/connect

    Carries the request-only fields: an optional password and the flag
    marking a saved profile whose password must come from secure storage.
    """

    password: Optional[SecretStr] = Field(default=None)
    is_loaded_connection: bool = False

    def password_value(self) -> str:
        """Plain password, empty string when absent"""
        if self.password is None:
            return ""
        return self.password.get_secret_value()

    def profile(self) -> ConnectionProfile:
        """Strip request-only fields, leaving what may be persisted"""
        fields = set(ConnectionProfile.model_fields)
        return ConnectionProfile.model_validate(self.model_dump(include=fields))

    def with_form_defaults(self) -> 'ConnectionConfig':
        """Fill unset flags with the connection form defaults"""
        update = {}
        if self.encrypt is None:
            update['encrypt'] = DEFAULT_ENCRYPT
        if self.trust_server_certificate is None:
            update['trust_server_certificate'] = DEFAULT_TRUST_SERVER_CERTIFICATE
        return self.model_copy(update=update) if update else self

    @classmethod
    def coerce(cls, value: Union['ConnectionConfig', ConnectionProfile, dict]) -> 'ConnectionConfig':
        """
        Accept a config, a bare profile or a UI dictionary

        Raises:
            ValidationError: If the dictionary does not describe a connection
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, ConnectionProfile):
            return cls.from_profile(value)
        try:
            return cls.model_validate(value)
        except PydanticValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise ValidationError(f"Invalid connection configuration: {fields}") from e

    @classmethod
    def from_profile(
        cls,
        profile: ConnectionProfile,
        password: Optional[str] = None,
        is_loaded_connection: bool = False,
    ) -> 'ConnectionConfig':
        data = profile.model_dump()
        return cls.model_validate({
            **data,
            'password': password,
            'is_loaded_connection': is_loaded_connection,
        })
