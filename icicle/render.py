# icicle/render.py
"""
Renders a template set into the configuration tree of the target system.

Templates are plain text files with @MARKER@ tokens. Each token is replaced
at most once per file, by literal text substitution, in a fixed order. The
rendered files are written through the privileged helper, so the renderer
itself never needs write access to the scratch root.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from icicle import stanzas
from icicle.config.models import InstallRequest
from icicle.config.settings import InstallerSettings
from icicle.utils.exceptions import EnvironmentDetectionError, NoBootDeviceError, TemplateRenderError
from icicle.utils.executor import PrivilegedGateway
from icicle.utils.logger import RichAppLogger

STATE_VERSION_LENGTH = 5


@dataclass(frozen=True)
class RenderContext:
    """Facts a single template is rendered against."""
    request: InstallRequest
    boot_device: Optional[str]
    arch: str
    efi: bool
    system_version: str
    baseline_package: str = "firefox"


def _replace_once(text: str, token: str, value: str) -> str:
    return text.replace(token, value, 1)


def render_text(text: str, ctx: RenderContext, template: str = "<memory>") -> str:
    """
    Substitutes every known marker in a template's text.

    Raises:
        NoBootDeviceError: Legacy boot without a resolved boot device.
        TemplateRenderError: The system version is shorter than five characters.
    """
    request = ctx.request
    user = request.user

    text = _replace_once(text, "@NVIDIAOFFLOAD@", "")
    text = _replace_once(text, "@ARCH@", f"{ctx.arch}-linux")

    if ctx.efi:
        text = _replace_once(text, "@BOOTLOADER@", stanzas.EFI_BOOTLOADER)
    else:
        if not ctx.boot_device:
            raise NoBootDeviceError(f"Failed to get bootloader disk for '{template}'")
        text = _replace_once(text, "@BOOTLOADER@", stanzas.legacy_bootloader(ctx.boot_device))

    text = _replace_once(text, "@NETWORK@", stanzas.network(request.hostname))

    if request.timezone:
        text = _replace_once(text, "@TIMEZONE@", stanzas.timezone(request.timezone))
    if request.language:
        text = _replace_once(text, "@LOCALE@", stanzas.locale(request.language))
    if request.keyboard:
        text = _replace_once(text, "@KEYBOARD@", stanzas.keyboard(request.keyboard))

    text = _replace_once(text, "@DESKTOP@", stanzas.DESKTOP)

    if user is not None:
        text = _replace_once(text, "@USERNAME@", user.username)
        text = _replace_once(text, "@FULLNAME@", user.fullname)
        text = _replace_once(text, "@HOSTNAME@", user.hostname)

    autologin = stanzas.autologin(user.username) if user is not None and user.autologin else ""
    text = _replace_once(text, "@AUTOLOGIN@", autologin)

    # Packages are gathered across all groups and emitted in @PACKAGES@
    extra_packages: List[str] = []
    for group_id, choices in request.features.items():
        snippet = ""
        for choice in choices.values():
            if choice.packages:
                extra_packages.extend(choice.packages)
            if choice.config:
                snippet += stanzas.feature_snippet(choice.config)
        text = _replace_once(text, f"@{group_id}@", snippet)

    text = _replace_once(text, "@PACKAGES@", stanzas.packages(ctx.baseline_package, extra_packages))

    version = ctx.system_version.strip()
    if len(version) < STATE_VERSION_LENGTH:
        raise TemplateRenderError(template, f"Failed to get nixos version from '{version}'")
    text = _replace_once(text, "@STATEVERSION@", stanzas.state_version(version[:STATE_VERSION_LENGTH]))

    return text


class ConfigRenderer:
    """
    Walks a template set and writes the rendered configuration files.
    """

    def __init__(self,
                 gateway: PrivilegedGateway,
                 settings: InstallerSettings,
                 logger_instance: RichAppLogger,
                 efi: Optional[bool] = None):
        self.gateway = gateway
        self.settings = settings
        self.logger = logger_instance
        self._efi = efi

    # --- Host facts ---

    def detect_efi(self) -> bool:
        if self._efi is not None:
            return self._efi
        return Path(self.settings.efi_firmware_path).is_dir()

    def detect_architecture(self) -> str:
        arch = self.gateway.query(["uname", "-m"]).strip()
        if not arch:
            raise EnvironmentDetectionError("Failed to get architecture: empty output from uname")
        return arch

    def detect_system_version(self) -> str:
        return self.gateway.query(["nixos-version"])

    # --- Tree walking ---

    def walk_templates(self, root: Path) -> Iterator[Tuple[str, Path]]:
        """
        Yields (relative directory, template file) pairs, depth first.

        Entries are visited in name order; the files of a directory come
        before its subdirectories.
        """
        stack: List[str] = [""]
        while stack:
            relative = stack.pop()
            directory = root / relative if relative else root
            try:
                entries = sorted(directory.iterdir(), key=lambda p: p.name)
            except OSError as e:
                raise TemplateRenderError(str(directory), f"Cannot list template directory: {e}")

            subdirectories = []
            for entry in entries:
                if entry.is_dir():
                    subdirectories.append(f"{relative}/{entry.name}" if relative else entry.name)
                elif entry.name.endswith(self.settings.config_extension):
                    yield relative, entry
            stack.extend(reversed(subdirectories))

    def destination_path(self, relative: str, filename: str, arch: str, hostname: str) -> str:
        """Mirrors a template path into the target configuration directory."""
        if not relative:
            return f"{self.settings.config_dir}/{filename}"
        relative = relative.replace("ARCH", f"{arch}-linux").replace("HOSTNAME", hostname)
        return f"{self.settings.config_dir}/{relative}/{filename}"

    # --- Rendering ---

    def render(self, request: InstallRequest, boot_device: Optional[str], arch: Optional[str] = None) -> List[str]:
        """
        Renders every template of the request's template set.

        Files written before a failure stay in place.

        Returns:
            The destination paths that were written, in render order.
        """
        root = self.settings.template_root / request.template
        if not root.is_dir():
            raise TemplateRenderError(str(root), "Template set not found")

        ctx = RenderContext(
            request=request,
            boot_device=boot_device,
            arch=arch or self.detect_architecture(),
            efi=self.detect_efi(),
            system_version=self.detect_system_version(),
            baseline_package=self.settings.baseline_package,
        )
        self.logger.info(f"Rendering template set '{request.template}' (arch={ctx.arch}, efi={ctx.efi})")

        written: List[str] = []
        for relative, template in self.walk_templates(root):
            try:
                text = template.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise TemplateRenderError(str(template), f"Cannot read template: {e}")

            contents = render_text(text, ctx, template=str(template))
            destination = self.destination_path(relative, template.name, ctx.arch, request.hostname)
            self.gateway.write_file(destination, contents)
            written.append(destination)

        self.logger.info(f"Rendered {len(written)} configuration file(s)")
        return written
