"""
Configuration for DCExport.

Supports loading from environment variables and config files.
"""

import os
import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional, List

from .errors import ConfigError
from .exporter import ExportOptions
from .models import ExportFormat, parse_snowflake


@dataclass
class Config:
    """
    DCExport configuration with sensible defaults.

    Media options only make sense together with ``download_assets``;
    ``validate`` reports any combination that does not.
    """

    # Credentials for the DiscordBackend the caller constructs; the core
    # itself only talks to the public CDN and never reads this
    token: Optional[str] = None

    # Output
    output_path: str = "./"
    export_format: str = "htmldark"  # txt, htmldark, htmllight, csv, json
    locale: Optional[str] = None
    utc_normalization: bool = False
    normalize_json: bool = False  # JSON only

    # Time range (snowflake or ISO date)
    after: Optional[str] = None
    before: Optional[str] = None
    first_day_of_month: bool = False

    # Media settings
    download_assets: bool = False
    reuse_assets: bool = False
    nested_media_paths: bool = False
    assets_dir: Optional[str] = None
    skip_bot_attachments: bool = False

    # Concurrency and HTTP
    parallel: int = 1  # Channels exported at once
    max_retries: int = 3  # Attempts per asset download
    request_timeout: int = 60  # Seconds

    # Reporting
    show_stats: bool = False
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls(
            token=os.getenv("DISCORD_TOKEN"),
            output_path=os.getenv("DCEXPORT_OUTPUT", "./"),
            export_format=os.getenv("DCEXPORT_FORMAT", "htmldark"),
            locale=os.getenv("DCEXPORT_LOCALE"),
            assets_dir=os.getenv("DCEXPORT_MEDIA_DIR"),
            parallel=int(os.getenv("DCEXPORT_PARALLEL", 1)),
            max_retries=int(os.getenv("DCEXPORT_MAX_RETRIES", 3)),
            log_level=os.getenv("DCEXPORT_LOG_LEVEL", "INFO"),
        )

    @classmethod
    def from_file(cls, path: Path) -> "Config":
        """Load configuration from a JSON file."""
        with open(path) as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigError(f"Invalid JSON in config file {path}: {e}") from e
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigError(f"Invalid config file {path}: {e}") from e

    def to_file(self, path: Path) -> None:
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(asdict(self), f, indent=2)

    def validate(self) -> List[str]:
        """Validate configuration, returns list of errors."""
        errors = []

        if self.export_format not in {f.value for f in ExportFormat}:
            errors.append(f"export_format must be one of: {', '.join(f.value for f in ExportFormat)}")

        # Media options are meaningless without downloading media
        if not self.download_assets:
            if self.reuse_assets:
                errors.append("reuse_assets cannot be used without download_assets")
            if self.nested_media_paths:
                errors.append("nested_media_paths cannot be used without download_assets")
            if self.skip_bot_attachments:
                errors.append("skip_bot_attachments cannot be used without download_assets")
            if self.assets_dir and self.assets_dir.strip():
                errors.append("assets_dir cannot be used without download_assets")

        if self.normalize_json and self.export_format != ExportFormat.JSON.value:
            errors.append("normalize_json can only be used with the json export format")

        if self.first_day_of_month and (self.after is None or self.before is None):
            errors.append("first_day_of_month requires both after and before")

        for name in ("after", "before"):
            value = getattr(self, name)
            if value is not None:
                try:
                    parse_snowflake(value)
                except ValueError:
                    errors.append(f"{name} must be a snowflake or an ISO date, got {value!r}")

        if self.parallel < 1:
            errors.append("parallel must be >= 1")
        if self.max_retries < 1:
            errors.append("max_retries must be >= 1")
        if self.request_timeout < 1:
            errors.append("request_timeout must be >= 1")

        return errors

    def to_options(self) -> ExportOptions:
        """Build export options, raising ConfigError if the configuration is invalid."""
        errors = self.validate()
        if errors:
            raise ConfigError("; ".join(errors))

        return ExportOptions(
            output_path=self.output_path,
            export_format=ExportFormat(self.export_format),
            assets_dir=self.assets_dir,
            after=parse_snowflake(self.after) if self.after is not None else None,
            before=parse_snowflake(self.before) if self.before is not None else None,
            download_assets=self.download_assets,
            skip_bot_attachments=self.skip_bot_attachments,
            reuse_assets=self.reuse_assets,
            nested_media_paths=self.nested_media_paths,
            locale=self.locale,
            utc_normalization=self.utc_normalization,
            normalize_json=self.normalize_json,
            first_day_of_month=self.first_day_of_month,
        )
