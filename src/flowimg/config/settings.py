"""Configuration management for flowimg.

Loads settings from a YAML configuration file with environment variable
overrides (``FLOWIMG_`` prefix, ``__`` between nested keys). Supports
.env files.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from flowimg.domain.models import CameraConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/flowimg.yaml")


class CaptureConfig(BaseModel):
    backend: Literal["opencv", "opencv_stream", "browser"] = Field(default="opencv")
    device_index: int = Field(default=0, ge=0, description="Camera device index")
    frame_width: int = Field(default=640, gt=0)
    frame_height: int = Field(default=480, gt=0)
    api_preference: int = Field(default=0, ge=0, description="OpenCV CAP_* API id")

    def camera_config(self) -> CameraConfig:
        """The immutable device configuration handed to a capture node."""
        return CameraConfig(
            device_index=self.device_index,
            frame_width=self.frame_width,
            frame_height=self.frame_height,
            api_preference=self.api_preference,
        )


class BrowserConfig(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8765, ge=1, le=65535)
    mime_type: Literal["image/jpeg", "image/png"] = Field(default="image/jpeg")
    quality: float = Field(default=0.92, gt=0, le=1.0)
    timeout: float | None = Field(
        default=None, gt=0, description="Seconds to wait on the browser; None waits forever"
    )


class TensorConfig(BaseModel):
    dtype: Literal["uint8", "uint16", "int32", "int64", "float32", "float64"] = Field(
        default="float32"
    )
    allow_lossy: bool = Field(default=False)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for flowimg.

    Values resolve per key, highest first: constructor arguments,
    environment variables, the .env file, then the YAML file named by
    ``yaml_file``.
    """

    model_config = SettingsConfigDict(
        env_prefix="FLOWIMG_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    tensor: TensorConfig = Field(default_factory=TensorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: env vars > .env file > YAML file > defaults. Sources are
    merged key by key, so ``FLOWIMG_CAPTURE__DEVICE_INDEX`` overrides
    only that key of a ``capture`` section present in the file.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if path.exists():
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    class FileSettings(Settings):
        model_config = SettingsConfigDict(yaml_file=path)

    return FileSettings()
