# icicle/stanzas.py
"""
Configuration snippets substituted for the template markers.

Every stanza is indented by two spaces so it lands inside the attribute set
of a configuration.nix style template. The texts are part of the output
format of existing template sets and must stay byte-for-byte stable.
"""
from typing import List

EFI_BOOTLOADER = """  # Bootloader.
  boot.loader.systemd-boot.enable = true;
  boot.loader.efi.canTouchEfiVariables = true;
  boot.loader.efi.efiSysMountPoint = "/boot/efi";"""

DESKTOP = """  # Enable the X11 windowing system.
  services.xserver.enable = true;
  # Enable the GNOME Desktop Environment.
  services.xserver.displayManager.gdm.enable = true;
  services.xserver.desktopManager.gnome.enable = true;"""

AUTOLOGIN_WORKAROUND = """  # Workaround for GNOME autologin: https://github.com/NixOS/nixpkgs/issues/103746#issuecomment-945091229
  systemd.services."getty@tty1".enable = false;
  systemd.services."autovt@tty1".enable = false;
"""


def legacy_bootloader(device: str) -> str:
    return f"""  # Bootloader.
  boot.loader.grub.enable = true;
  boot.loader.grub.device = "{device}";
  boot.loader.grub.useOSProber = true;"""


def network(hostname: str) -> str:
    return f"""  # Define your hostname.
  networking.hostName = "{hostname}";

  # Enable networking
  networking.networkmanager.enable = true;"""


def timezone(tz: str) -> str:
    return f"""  # Set your time zone.
  time.timeZone = "{tz}";"""


def locale(language: str) -> str:
    return f"""  # Select internationalisation properties.
  i18n.defaultLocale = "{language}";"""


def keyboard(keymap: str) -> str:
    """Keyboard stanza for "layout" or "layout+variant"."""
    if "+" in keymap:
        layout, variant = keymap.split("+")[:2]
        return f"""  # Set the keyboard layout.
  services.xserver = {{
    layout = "{layout}";
    xkbVariant = "{variant}";
  }};
  console.useXkbConfig = true;"""
    return f"""  # Set the keyboard layout.
  services.xserver.layout = "{keymap}";
  console.useXkbConfig = true;"""


def autologin(username: str) -> str:
    return f"""  # Enable automatic login for the user.
  services.xserver.displayManager.autoLogin.enable = true;
  services.xserver.displayManager.autoLogin.user = "{username}";
""" + AUTOLOGIN_WORKAROUND


def feature_snippet(config: str) -> str:
    """Indents every line of a feature option's raw configuration."""
    return "".join(f"  {line}\n" for line in config.splitlines())


def packages(baseline: str, extra: List[str]) -> str:
    if not extra:
        return f"""  # List packages installed in system profile.
  environment.systemPackages = with pkgs; [
    {baseline}
  ];"""
    joined = "\n    ".join(extra)
    return f"""  # List packages installed in system profile.
  environment.systemPackages = with pkgs; [
    {baseline}
    {joined}
  ];"""


def state_version(version: str) -> str:
    return f"""  system.stateVersion = "{version}"; # Did you read the comment?"""
