"""Configuration management for grub-sign."""

import json
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel

DEFAULT_CONFIG_PATH = Path("/etc/grub-sign/config.yaml")
CONFIG_ENV_VAR = "GRUB_SIGN_CONFIG"


class KeyConfig(BaseModel):
    """Signing key store layout."""

    key_directory: str = "/etc/grub-sign/keys"
    certificate_name: str = "db.crt"
    private_key_name: str = "db.key"
    gnupg_subdir: str = "gnupg"
    key_label: str = "grub-sign"

    @property
    def key_dir(self) -> Path:
        return Path(self.key_directory)

    @property
    def certificate_path(self) -> Path:
        return self.key_dir / self.certificate_name

    @property
    def private_key_path(self) -> Path:
        return self.key_dir / self.private_key_name

    @property
    def gnupg_home(self) -> Path:
        return self.key_dir / self.gnupg_subdir


class PassphraseConfig(BaseModel):
    """Passphrase prompt configuration."""

    max_attempts: int = 3
    prompt: str = "Passphrase for the grub-sign signing key"


class GrubConfig(BaseModel):
    """Bootloader image build configuration."""

    target: str = "x86_64-efi"
    lib_directory: str = "/usr/lib/grub/x86_64-efi"
    stock_installer: str = "/usr/sbin/grub-install.stock"
    mknetdir: str = "grub-mknetdir"
    mkstandalone: str = "grub-mkstandalone"
    config_file: str = "/boot/grub/grub.cfg"
    modules: list[str] = [
        "pgp",
        "gcry_sha256",
        "gcry_sha512",
        "part_gpt",
        "part_msdos",
        "fat",
        "ext2",
        "search",
        "configfile",
        "normal",
        "linux",
    ]
    extra_build_args: list[str] = []
    restore_args: list[str] = []


class EfiConfig(BaseModel):
    """EFI system partition and firmware entry configuration."""

    esp_mount: str = "/boot/efi"
    bootloader_id: str = "grub-sign"
    image_name: str = "grubx64-signed.efi"
    entry_label: str = "grub-sign"
    # ESP directory the distribution's own grub-install writes to
    stock_bootloader_id: str = "ubuntu"
    stock_config: str = "grub.cfg"
    stale_files: list[str] = [
        "grubx64.efi",
        "shimx64.efi",
        "mmx64.efi",
        "fbx64.efi",
        "BOOTX64.CSV",
    ]

    @property
    def efi_dir(self) -> Path:
        return Path(self.esp_mount) / "EFI" / self.bootloader_id

    @property
    def stock_dir(self) -> Path:
        return Path(self.esp_mount) / "EFI" / self.stock_bootloader_id

    @property
    def image_path(self) -> Path:
        return self.efi_dir / self.image_name

    @property
    def loader_path(self) -> str:
        """Loader path as the firmware expects it, relative to the ESP root."""
        return f"\\EFI\\{self.bootloader_id}\\{self.image_name}"


class BootConfig(BaseModel):
    """Boot directory artifacts that receive detached signatures."""

    boot_directory: str = "/boot"
    kernel_prefixes: list[str] = ["vmlinuz-", "vmlinux-"]
    artifact_patterns: list[str] = [
        "vmlinuz-*",
        "vmlinux-*",
        "initrd.img-*",
        "initramfs-*",
    ]
    resign_embedded: bool = True
    stale_paths: list[str] = [
        "grub/fonts",
        "grub/locale",
        "grub/x86_64-efi",
        "grub/grubenv",
    ]


class ToolConfig(BaseModel):
    """Timeouts in seconds for external tools."""

    assemble_timeout: float = 300
    sign_timeout: float = 120
    build_timeout: float = 300
    firmware_timeout: float = 60
    installer_timeout: float = 600


class SecureBootConfig(BaseModel):
    """Complete grub-sign configuration."""

    keys: KeyConfig = KeyConfig()
    passphrase: PassphraseConfig = PassphraseConfig()
    grub: GrubConfig = GrubConfig()
    efi: EfiConfig = EfiConfig()
    boot: BootConfig = BootConfig()
    tools: ToolConfig = ToolConfig()

    verify_after_sign: bool = True
    require_root: bool = True
    lock_file: str = "/run/grub-sign.lock"
    lock_timeout: float = 600
    log_level: str = "WARNING"


def load_config(config_path: Path) -> SecureBootConfig:
    """Load configuration from file.

    Supports YAML and JSON formats.

    Args:
        config_path: Path to configuration file

    Returns:
        SecureBootConfig object
    """
    with open(config_path) as f:
        if config_path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        elif config_path.suffix == ".json":
            data = json.load(f)
        else:
            raise ValueError(f"Unsupported config format: {config_path.suffix}")

    return SecureBootConfig(**(data or {}))


def save_config(config: SecureBootConfig, config_path: Path) -> None:
    """Save configuration to file.

    Args:
        config: Configuration to save
        config_path: Output path
    """
    data = config.model_dump()

    with open(config_path, "w") as f:
        if config_path.suffix in (".yaml", ".yml"):
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        elif config_path.suffix == ".json":
            json.dump(data, f, indent=2)
        else:
            raise ValueError(f"Unsupported config format: {config_path.suffix}")


def generate_default_config(format: str = "yaml") -> str:
    """Generate default configuration content.

    Args:
        format: Output format ("yaml" or "json")

    Returns:
        Configuration file content as string
    """
    data = SecureBootConfig().model_dump()

    if format == "yaml":
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    elif format == "json":
        return json.dumps(data, indent=2)
    else:
        raise ValueError(f"Unsupported format: {format}")


def resolve_config(config_path: Optional[Path] = None) -> SecureBootConfig:
    """Load the effective configuration.

    An explicit path wins, then ``$GRUB_SIGN_CONFIG``, then the default file.
    A missing default file yields built-in defaults; a missing explicit file
    is an error.
    """
    if config_path is not None:
        return load_config(config_path)

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return load_config(Path(env_path))

    if DEFAULT_CONFIG_PATH.exists():
        return load_config(DEFAULT_CONFIG_PATH)
    return SecureBootConfig()
