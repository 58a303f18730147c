"""Configuration management for assetdelta."""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, field_validator

logger = structlog.get_logger()

DEFAULT_CONFIG_FILE = Path.home() / ".config" / "assetdelta" / "config.json"


class FetchConfig(BaseModel):
    """Delta download settings."""

    concurrency: int = Field(default=10, description="Maximum concurrent transfers")
    max_retries: int = Field(default=3, description="Total attempts per object")
    base_backoff: float = Field(default=1.0, description="First retry delay in seconds, doubled per attempt")
    timeout: float = Field(default=30.0, description="Per-request timeout in seconds")
    terminal_statuses: list[int] = Field(
        default=[403, 404],
        description="HTTP statuses that are never retried"
    )
    user_agent: str = Field(default="assetdelta/0.1.0", description="User-Agent header")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")

    @field_validator("concurrency", "max_retries")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate counts."""
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator("base_backoff")
    @classmethod
    def validate_backoff(cls, v: float) -> float:
        """Validate backoff value."""
        if v < 0:
            raise ValueError("Backoff must be non-negative")
        return v

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate timeout value."""
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v


class ReconcileConfig(BaseModel):
    """Tree reconciliation settings."""

    max_workers: int = Field(default=5, description="Concurrent hash comparisons")
    lock_retries: int = Field(default=5, description="Attempts for reads/deletes of locked files")
    lock_retry_delay: float = Field(default=0.1, description="Fixed delay between lock retries in seconds")
    remove_empty_root: bool = Field(default=True, description="Remove the candidate root when it ends up empty")

    @field_validator("max_workers", "lock_retries")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate counts."""
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator("lock_retry_delay")
    @classmethod
    def validate_delay(cls, v: float) -> float:
        """Validate delay value."""
        if v < 0:
            raise ValueError("Delay must be non-negative")
        return v


class SegmentConfig(BaseModel):
    """Segment reassembly settings."""

    extensions: list[str] = Field(default=[".acb"], description="Extensions of split artifacts")
    delete_sources: bool = Field(default=False, description="Delete segments after a verified merge")
    output_subdir: str | None = Field(
        default=None,
        description="Write merged files under this directory of the scan root instead of beside the segments"
    )

    @field_validator("extensions")
    @classmethod
    def validate_extensions(cls, v: list[str]) -> list[str]:
        """Normalize extensions to lowercase with a leading dot."""
        if not v:
            raise ValueError("Extensions list cannot be empty")
        return [e.lower() if e.startswith(".") else f".{e.lower()}" for e in v]


class DecodeConfig(BaseModel):
    """External decoder settings."""

    container_extension: str = Field(default=".acb", description="Container file extension")
    encoded_extension: str = Field(default=".hca", description="Encoded audio extension inside containers")
    key: int = Field(default=0x22CE, description="Numeric key passed to the codec decoder")
    max_workers: int = Field(default=4, description="Concurrent codec decodes")
    delete_containers: bool = Field(default=True, description="Delete containers after extraction")
    delete_encoded: bool = Field(default=True, description="Delete encoded files after decoding")
    extract_command: list[str] | None = Field(
        default=None,
        description="Extraction command template using {input} and {output}"
    )
    container_command: list[str] | None = Field(
        default=None,
        description="Container decode command template using {input} and {output}"
    )
    codec_command: list[str] | None = Field(
        default=None,
        description="Codec decode command template using {input}, {output} and {key}"
    )
    command_timeout: float = Field(default=600.0, description="Timeout for one external command in seconds")

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Validate worker count."""
        if v < 1:
            raise ValueError("Workers must be at least 1")
        return v


class PathsConfig(BaseModel):
    """Working directory layout.

    Relative paths are resolved against ``root``.
    """

    root: Path = Field(default=Path("."), description="Project working directory")
    registry_file: Path = Field(default=Path("AssetBundleInfoUrl.json"), description="Version to URL registry")
    manifest_dir: Path = Field(default=Path("AssetBundleInfo"), description="Manifest snapshots")
    diff_dir: Path = Field(default=Path("compare"), description="Diff and failed-download records")
    download_dir: Path = Field(default=Path("analysing"), description="Downloaded raw bundle files per version")
    export_dir: Path = Field(default=Path("assets"), description="Extracted trees per version")

    def resolve(self, path: Path) -> Path:
        return path if path.is_absolute() else self.root / path

    @property
    def registry_path(self) -> Path:
        return self.resolve(self.registry_file)

    @property
    def manifests(self) -> Path:
        return self.resolve(self.manifest_dir)

    @property
    def diffs(self) -> Path:
        return self.resolve(self.diff_dir)

    @property
    def downloads(self) -> Path:
        return self.resolve(self.download_dir)

    @property
    def exports(self) -> Path:
        return self.resolve(self.export_dir)


class AppConfig(BaseModel):
    """Application configuration."""

    paths: PathsConfig = Field(default_factory=PathsConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)
    segments: SegmentConfig = Field(default_factory=SegmentConfig)
    decode: DecodeConfig = Field(default_factory=DecodeConfig)

    manifest_timeout: float = Field(default=20.0, description="Manifest snapshot download timeout")
    version_step: int = Field(default=10, description="Increment used to guess the next release number")

    output_format: str = Field(
        default="rich",
        description="Output format (rich, json, plain)"
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    @classmethod
    def load(cls, config_file: Path | None = None) -> AppConfig:
        """Load configuration from file.

        Args:
            config_file: Path to config file, uses default if None

        Returns:
            Application configuration
        """
        if config_file is None:
            config_file = DEFAULT_CONFIG_FILE

        if config_file.exists():
            with open(config_file, encoding="utf-8") as f:
                data = json.load(f)
                return cls(**data)

        # Return defaults
        return cls()

    def save(self, config_file: Path | None = None) -> None:
        """Save configuration to file.

        Args:
            config_file: Path to config file, uses default if None
        """
        if config_file is None:
            config_file = DEFAULT_CONFIG_FILE

        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, "w", encoding="utf-8") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)

        logger.info("config_saved", path=str(config_file))

    @field_validator("output_format")
    @classmethod
    def validate_output_format(cls, v: str) -> str:
        """Validate output format."""
        valid_formats = {"rich", "json", "plain"}
        if v not in valid_formats:
            raise ValueError(f"Invalid output format: {v}. Valid formats: {valid_formats}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Valid levels: {valid_levels}")
        return v

    @field_validator("manifest_timeout")
    @classmethod
    def validate_manifest_timeout(cls, v: float) -> float:
        """Validate manifest timeout value."""
        if v <= 0:
            raise ValueError("Manifest timeout must be positive")
        return v

    @field_validator("version_step")
    @classmethod
    def validate_version_step(cls, v: int) -> int:
        """Validate version step."""
        if v < 1:
            raise ValueError("Version step must be at least 1")
        return v
