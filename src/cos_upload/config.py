"""Configuration loading and Pydantic models for cos-upload."""

import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator

from cos_upload.errors import ConfigurationError

MIB = 1024 * 1024

# Environment variable names for the four required settings.
ENV_SECRET_ID = "TENCENT_SECRET_ID"
ENV_SECRET_KEY = "TENCENT_SECRET_KEY"
ENV_REGION = "TENCENT_COS_REGION"
ENV_BUCKET = "TENCENT_COS_BUCKET"


class CredentialsConfig(BaseModel):
    """COS API credentials. The secret key is never shown in repr or logs."""

    model_config = ConfigDict(frozen=True)

    secret_id: str = Field(min_length=1)
    secret_key: SecretStr

    @field_validator("secret_key")
    @classmethod
    def _secret_key_not_empty(cls, value: SecretStr) -> SecretStr:
        if not value.get_secret_value():
            raise ValueError("secret_key must not be empty")
        return value


class EndpointConfig(BaseModel):
    """Bucket and region that together name the virtual host."""

    model_config = ConfigDict(frozen=True)

    region: str = Field(min_length=1)
    bucket: str = Field(min_length=1)
    domain: str = "myqcloud.com"
    scheme: str = "https"

    @property
    def host(self) -> str:
        """Virtual host name, e.g. ``examplebucket-1250000000.cos.ap-beijing.myqcloud.com``."""
        return f"{self.bucket}.cos.{self.region}.{self.domain}"

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}"


class UploadConfig(BaseModel):
    """Upload routing and request tuning."""

    model_config = ConfigDict(frozen=True)

    multipart_threshold: int = Field(default=5 * MIB, ge=0)
    part_size: int = Field(default=5 * MIB, gt=0)
    sign_expire: int = Field(default=3600, gt=0)
    timeout: float = Field(default=60.0, gt=0)
    concurrency: int = Field(default=1, ge=1)
    abort_on_failure: bool = False


class LoggingConfig(BaseModel):
    """Log level and output format."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    format: str = "text"


class MetricsConfig(BaseModel):
    """Prometheus metrics toggle."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False


class CosConfig(BaseModel):
    """Top-level cos-upload configuration."""

    model_config = ConfigDict(frozen=True)

    credentials: CredentialsConfig
    endpoint: EndpointConfig
    upload: UploadConfig = Field(default_factory=UploadConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @classmethod
    def create(
        cls,
        secret_id: str,
        secret_key: str,
        region: str,
        bucket: str,
        **upload: Any,
    ) -> "CosConfig":
        """Build a config directly from the four required values.

        Args:
            secret_id: COS SecretId.
            secret_key: COS SecretKey.
            region: COS region, e.g. ``ap-guangzhou``.
            bucket: Bucket name including the APPID suffix.
            **upload: Optional ``UploadConfig`` overrides.

        Raises:
            ConfigurationError: If any value is empty or invalid.
        """
        try:
            return cls(
                credentials=CredentialsConfig(secret_id=secret_id, secret_key=secret_key),
                endpoint=EndpointConfig(region=region, bucket=bucket),
                upload=UploadConfig(**upload),
            )
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, **upload: Any
    ) -> "CosConfig":
        """Build a config from the TENCENT_* environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``.
            **upload: Optional ``UploadConfig`` overrides.

        Raises:
            ConfigurationError: If any of the four variables is unset or empty.
        """
        env = os.environ if environ is None else environ
        names = (ENV_SECRET_ID, ENV_SECRET_KEY, ENV_REGION, ENV_BUCKET)
        missing = [name for name in names if not env.get(name)]
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}"
            )
        return cls.create(
            env[ENV_SECRET_ID], env[ENV_SECRET_KEY], env[ENV_REGION], env[ENV_BUCKET], **upload
        )


def _parse_credentials(
    data: dict[str, Any] | None, environ: Mapping[str, str], from_env: bool
) -> dict[str, Any]:
    """Parse the credentials section, optionally filling gaps from the environment."""
    data = data or {}
    result = {
        "secret_id": data.get("secret_id", ""),
        "secret_key": data.get("secret_key", ""),
    }
    if from_env:
        result["secret_id"] = result["secret_id"] or environ.get(ENV_SECRET_ID, "")
        result["secret_key"] = result["secret_key"] or environ.get(ENV_SECRET_KEY, "")
    return result


def _parse_endpoint(
    data: dict[str, Any] | None, environ: Mapping[str, str], from_env: bool
) -> dict[str, Any]:
    """Parse the endpoint section.

    Handles the flat ``region``/``bucket`` keys plus optional ``domain`` and
    ``scheme`` overrides.
    """
    data = data or {}
    result: dict[str, Any] = {
        "region": data.get("region", ""),
        "bucket": data.get("bucket", ""),
    }
    if from_env:
        result["region"] = result["region"] or environ.get(ENV_REGION, "")
        result["bucket"] = result["bucket"] or environ.get(ENV_BUCKET, "")
    if "domain" in data:
        result["domain"] = data["domain"]
    if "scheme" in data:
        result["scheme"] = data["scheme"]
    return result


def _parse_upload(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the upload section.

    Sizes may be given in bytes (``part_size``) or MiB (``part_size_mb``).
    """
    if data is None:
        return {}
    result: dict[str, Any] = {}
    for name in ("multipart_threshold", "part_size"):
        if f"{name}_mb" in data:
            result[name] = int(data[f"{name}_mb"] * MIB)
        elif name in data:
            result[name] = data[name]
    for name in ("sign_expire", "timeout", "concurrency", "abort_on_failure"):
        if name in data:
            result[name] = data[name]
    return result


def load_config(path: Path, environ: Mapping[str, str] | None = None) -> CosConfig:
    """Load a CosConfig from a YAML file.

    The file holds a top-level ``cos`` mapping with ``credentials``,
    ``endpoint``, ``upload``, ``logging`` and ``metrics`` sections. When
    ``credentials_from_env`` is true, empty credential and endpoint values
    are taken from the TENCENT_* environment variables.

    Args:
        path: Path to the YAML configuration file.
        environ: Mapping to read instead of ``os.environ``.

    Returns:
        A fully populated CosConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ConfigurationError: If required values are missing or invalid.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    section: dict[str, Any] = raw.get("cos") or {}
    env = os.environ if environ is None else environ
    from_env = bool(section.get("credentials_from_env", False))

    try:
        return CosConfig(
            credentials=CredentialsConfig(
                **_parse_credentials(section.get("credentials"), env, from_env)
            ),
            endpoint=EndpointConfig(**_parse_endpoint(section.get("endpoint"), env, from_env)),
            upload=UploadConfig(**_parse_upload(section.get("upload"))),
            logging=LoggingConfig(**(section.get("logging") or {})),
            metrics=MetricsConfig(**(section.get("metrics") or {})),
        )
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration in {path}: {exc}") from exc
