"""Fallback to the stock installer and cleanup of unsigned boot paths."""

import logging
import shutil
from pathlib import Path
from typing import Sequence

from .config import BootConfig, EfiConfig, GrubConfig
from .grub import ImageBuildService
from .registrar import BootRegistrar

logger = logging.getLogger(__name__)


def fall_back(builder: ImageBuildService, args: Sequence[str]) -> int:
    """Run the stock installer exactly as the caller invoked us.

    Returns:
        The stock installer's exit code
    """
    return builder.run_stock_installer(list(args))


def _remove(path: Path) -> bool:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()
    else:
        return False
    return True


def strip_stock_artifacts(efi: EfiConfig, boot: BootConfig) -> list[Path]:
    """Remove unsigned loaders and runtime files left by the stock installer.

    Each of them is a boot path the firmware menu could still select, so
    they go once the signed image is in place. The stock ESP configuration
    is truncated rather than deleted. Loaders are looked for both in the
    stock installer's ESP directory and in our own.

    Returns:
        Paths that were removed or blanked
    """
    changed = []

    directories = [efi.stock_dir]
    if efi.efi_dir != efi.stock_dir:
        directories.append(efi.efi_dir)
    for directory in directories:
        for name in efi.stale_files:
            path = directory / name
            if path == efi.image_path:
                continue
            if _remove(path):
                changed.append(path)

    boot_dir = Path(boot.boot_directory)
    for relative in boot.stale_paths:
        path = boot_dir / relative
        if _remove(path):
            changed.append(path)

    stock_config = efi.stock_dir / efi.stock_config
    if stock_config.is_file() and stock_config.stat().st_size > 0:
        stock_config.write_bytes(b"")
        changed.append(stock_config)

    for path in changed:
        logger.info("stripped %s", path)
    return changed


def restore(
    builder: ImageBuildService,
    registrar: BootRegistrar,
    efi: EfiConfig,
    grub: GrubConfig,
) -> int:
    """Undo the secure install after package removal.

    Our boot entries and image are removed, then the stock installer puts
    the stock boot files back.

    Returns:
        The stock installer's exit code
    """
    registrar.purge()
    if _remove(efi.image_path):
        logger.info("removed %s", efi.image_path)
    return builder.run_stock_installer(list(grub.restore_args))
