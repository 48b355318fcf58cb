"""Staging tree assembly.

The standalone image tool offers no way to sign the files it embeds, so the
runtime files are first assembled into a scratch directory where each one can
receive a detached signature before the tree is grafted into the image.
"""

import logging
import shutil
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Iterator

from .config import GrubConfig
from .engine import SIGNATURE_SUFFIX
from .grub import ImageBuildService

logger = logging.getLogger(__name__)

# Loader images and configuration emitted by the assembly tool come from an
# unsigned default and must never reach the signed tree.
UNTRUSTED_SUFFIXES = (".efi", ".img")
UNTRUSTED_NAMES = ("grub.cfg", "load.cfg")


@dataclass(frozen=True)
class StagingTree:
    """An exclusively owned scratch tree of bootloader runtime files."""

    root: Path
    grub_dir: Path

    @property
    def config_path(self) -> Path:
        return self.grub_dir / "grub.cfg"

    def files(self) -> list[Path]:
        """All regular files awaiting signatures, in a stable order."""
        return sorted(
            path
            for path in self.grub_dir.rglob("*")
            if path.is_file() and not path.name.endswith(SIGNATURE_SUFFIX)
        )


def is_untrusted(path: Path) -> bool:
    return path.suffix in UNTRUSTED_SUFFIXES or path.name in UNTRUSTED_NAMES


class StagingAssembler:
    """Builds a StagingTree from the bootloader's own directory assembly."""

    def __init__(self, builder: ImageBuildService, config: GrubConfig) -> None:
        self.builder = builder
        self.config = config

    @contextmanager
    def assemble(self) -> Iterator[StagingTree]:
        """Assemble a staging tree, removing it unconditionally on exit."""
        with TemporaryDirectory(prefix="grub-sign-staging-") as tmp:
            root = Path(tmp)
            grub_dir = self.builder.assemble_directory(root)
            tree = StagingTree(root=root, grub_dir=grub_dir)

            self._remove_untrusted(tree)
            self._install_config(tree)

            logger.info("staged %d files in %s", len(tree.files()), root)
            yield tree

    def _remove_untrusted(self, tree: StagingTree) -> None:
        for path in list(tree.root.rglob("*")):
            if path.is_file() and is_untrusted(path):
                logger.debug("removing untrusted %s", path)
                path.unlink()

    def _install_config(self, tree: StagingTree) -> None:
        config_file = Path(self.config.config_file)
        if not config_file.is_file():
            # First install: the configuration is generated later
            logger.info("no configuration at %s, staging without one", config_file)
            return
        shutil.copyfile(config_file, tree.config_path)
