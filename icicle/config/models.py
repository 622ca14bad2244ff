# icicle/config/models.py

import tomlkit
import typer
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pathlib import Path

# --- 1. Partition Scheme ---

class PartitionSpec(BaseModel):
    """A single partition of a custom layout."""
    model_config = ConfigDict(frozen=True)

    device: str
    mountpoint: Optional[str] = Field(None)
    filesystem: Optional[str] = Field(None, description="Filesystem to format with, None keeps the existing one.")


class FullDiskScheme(BaseModel):
    """Wipe the given disk and let the helper lay it out."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["full_disk"] = "full_disk"
    disk: str

    def to_payload(self) -> Dict[str, Any]:
        return {"FullDisk": self.disk}


class CustomScheme(BaseModel):
    """Use existing partitions, keyed by partition id."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["custom"] = "custom"
    partitions: Dict[str, PartitionSpec]

    @field_validator("partitions")
    @classmethod
    def _single_root(cls, partitions: Dict[str, PartitionSpec]) -> Dict[str, PartitionSpec]:
        roots = [pid for pid, p in partitions.items() if p.mountpoint == "/"]
        if len(roots) > 1:
            raise ValueError(f"Only one partition may be mounted at '/', got: {', '.join(roots)}")
        return partitions

    def to_payload(self) -> Dict[str, Any]:
        return {
            "Custom": {
                pid: {"device": p.device, "mountpoint": p.mountpoint, "format": p.filesystem}
                for pid, p in self.partitions.items()
            }
        }


PartitionScheme = Annotated[Union[FullDiskScheme, CustomScheme], Field(discriminator="kind")]

# --- 2. User and feature selections ---

class UserConfig(BaseModel):
    """The account created on the installed system."""
    model_config = ConfigDict(frozen=True)

    username: str
    password: SecretStr
    rootpassword: Optional[SecretStr] = Field(None)
    hostname: str = Field(min_length=1)
    fullname: str = Field("")
    autologin: bool = Field(False)


class Choice(BaseModel):
    """What a selected feature option contributes to the configuration."""
    model_config = ConfigDict(frozen=True)

    packages: Optional[List[str]] = Field(None)
    config: Optional[str] = Field(None)


class ConfigType(str, Enum):
    """Output layouts of the generated configuration tree."""
    STANDARD = "standard"
    # Hardware file under systems/<arch>-linux/<hostname>/, no flat configuration.nix
    STRUCTURED = "structured"


FeatureSelections = Dict[str, Dict[str, Choice]]


class Credentials(BaseModel):
    """The part of a UserConfig kept until passwords are set."""
    model_config = ConfigDict(frozen=True)

    username: Optional[str] = None
    password: Optional[SecretStr] = None
    rootpassword: Optional[SecretStr] = None

    @classmethod
    def from_user(cls, user: Optional[UserConfig]) -> 'Credentials':
        if user is None:
            return cls()
        return cls(username=user.username, password=user.password, rootpassword=user.rootpassword)

# --- 3. Top-Level Request ---

class InstallRequest(BaseModel):
    """Everything the presentation layer hands to the install pipeline."""
    model_config = ConfigDict(frozen=True)

    template: str = Field(description="Id of the template set under <sysconfdir>/icicle.")
    language: Optional[str] = Field(None)
    timezone: Optional[str] = Field(None)
    keyboard: Optional[str] = Field(None)
    partitions: Optional[PartitionScheme] = Field(None)
    user: Optional[UserConfig] = Field(None)
    features: FeatureSelections = Field(default_factory=dict)
    config_type: ConfigType = Field(ConfigType.STANDARD)

    @property
    def hostname(self) -> str:
        """Hostname used for paths and networking, "nixos" without a user."""
        return self.user.hostname if self.user else "nixos"

    @classmethod
    def load_request_from_file(cls, path: Path) -> 'InstallRequest':
        """Loads and validates a TOML request file against the schema."""
        try:
            content = path.read_text(encoding="utf-8")
        except Exception as e:
            raise ValueError(f"Error reading request file: {e}")

        try:
            data = tomlkit.parse(content).unwrap()
        except Exception as e:
            raise ValueError(f"Invalid TOML format in file: {e}")

        return cls(**data)

    def _safe_str(self, s: Optional[SecretStr]) -> str:
        """Masks a secret for display."""
        if not s or not s.get_secret_value():
            return "N/A"
        return "*" * 8

    def display_summary(self) -> str:
        """Generates the summary shown before the installation starts."""
        s = typer.style("\nGENERAL CONFIGURATION SUMMARY", fg=typer.colors.BLUE, bold=True) + "\n"
        s += "----------------------------------------\n"
        s += f"  Template:           {self.template}\n"
        s += f"  Layout:             {self.config_type.value}\n"
        s += f"  Hostname:           {self.hostname}\n"
        s += f"  Language:           {self.language or 'N/A'}\n"
        s += f"  Timezone:           {self.timezone or 'N/A'}\n"
        s += f"  Keyboard:           {self.keyboard or 'N/A'}\n"

        s += typer.style("\nDISK & PARTITION PLAN", fg=typer.colors.BLUE, bold=True) + "\n"
        s += "----------------------------------------\n"
        if self.partitions is None:
            s += typer.style("  No partition scheme selected\n", fg=typer.colors.RED)
        elif isinstance(self.partitions, FullDiskScheme):
            s += f"  Device: {typer.style(self.partitions.disk, fg=typer.colors.CYAN)} ({typer.style('WIPING', fg=typer.colors.RED)})\n"
        else:
            for pid, p in self.partitions.partitions.items():
                s += f"  - {pid:<10} {p.device:<15} -> FS: {p.filesystem or 'keep':<6} Mount: {p.mountpoint or '-'}\n"

        s += typer.style("\nUSER DETAILS", fg=typer.colors.BLUE, bold=True) + "\n"
        s += "----------------------------------------\n"
        if self.user is None:
            s += typer.style("  No user configured\n", fg=typer.colors.RED)
        else:
            u = self.user
            s += f"  User '{u.username}' ({u.fullname or 'N/A'}): Autologin={u.autologin}, Pwd={self._safe_str(u.password)}, Root Pwd={self._safe_str(u.rootpassword)}\n"

        if self.features:
            s += typer.style("\nFEATURE SELECTIONS", fg=typer.colors.BLUE, bold=True) + "\n"
            s += "----------------------------------------\n"
            for group, choices in self.features.items():
                s += f"  {group}: {', '.join(choices) or 'None'}\n"

        return s
