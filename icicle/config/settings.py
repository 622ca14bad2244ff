# icicle/config/settings.py

import tomlkit
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from pathlib import Path


class InstallerSettings(BaseModel):
    """Host-side locations and commands used by the installer pipeline."""

    model_config = ConfigDict(frozen=True)

    sysconfdir: str = Field("/etc", description="Parent of the icicle/<template> template sets.")
    libexecdir: str = Field("/usr/libexec", description="Directory holding icicle-helper.")
    helper_name: str = Field("icicle-helper")
    scratch_root: str = Field("/tmp/icicle", description="Mount point the target system is assembled on.")
    elevation_command: List[str] = Field(default_factory=lambda: ["pkexec"])
    config_extension: str = Field(".nix")
    baseline_package: str = Field("firefox")
    efi_firmware_path: str = Field("/sys/firmware/efi")
    command_timeout: Optional[float] = Field(None, gt=0)
    log_directory: str = Field("logs")
    log_file_name: str = Field("icicle.log")

    @property
    def template_root(self) -> Path:
        return Path(self.sysconfdir) / "icicle"

    @property
    def helper_path(self) -> str:
        return f"{self.libexecdir}/{self.helper_name}"

    @property
    def config_dir(self) -> str:
        """The configuration directory inside the scratch root."""
        return f"{self.scratch_root}/etc/nixos"

    @classmethod
    def load_settings_from_file(cls, path: Path) -> 'InstallerSettings':
        """Loads and validates a TOML settings file."""
        try:
            content = path.read_text(encoding="utf-8")
        except Exception as e:
            raise ValueError(f"Error reading settings file: {e}")

        try:
            data = tomlkit.parse(content).unwrap()
        except Exception as e:
            raise ValueError(f"Invalid TOML format in file: {e}")

        return cls(**data)
