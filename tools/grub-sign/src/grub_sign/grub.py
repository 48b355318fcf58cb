"""GRUB tool adapters: directory assembly, standalone build, stock installer."""

import logging
from pathlib import Path
from typing import Optional, Protocol, Sequence

from .config import GrubConfig, ToolConfig
from .tools import passthrough, run

logger = logging.getLogger(__name__)

# Subdirectory of the staging tree holding the assembled runtime files;
# it is grafted at /boot/grub inside the standalone image.
GRUB_SUBDIR = "grub"


class ImageBuildService(Protocol):
    """Protocol for the bootloader's own build tooling."""

    def assemble_directory(self, staging: Path) -> Path:
        """Populate staging with runtime files, returning the grub directory."""
        ...

    def build_standalone(
        self,
        tree: Path,
        public_key: Path,
        modules: Sequence[str],
        output: Path,
    ) -> None:
        """Build a standalone image with tree embedded at /boot/grub."""
        ...

    def run_stock_installer(self, args: Sequence[str]) -> int:
        """Run the unmodified installer with inherited stdio."""
        ...


class GrubImageBuilder:
    """Image building with ``grub-mknetdir`` and ``grub-mkstandalone``."""

    def __init__(self, config: GrubConfig, tools: Optional[ToolConfig] = None) -> None:
        """Initialize builder.

        Args:
            config: GRUB configuration
            tools: Tool timeouts
        """
        self.config = config
        self.tools = tools or ToolConfig()

    def assemble_directory(self, staging: Path) -> Path:
        """Assemble modules, fonts and locales into staging/grub.

        grub-mknetdir also writes a core image and a stub grub.cfg; removing
        them is the caller's job.
        """
        run(
            self.config.mknetdir,
            "--directory",
            self.config.lib_directory,
            "--net-directory",
            staging,
            "--subdir",
            GRUB_SUBDIR,
            timeout=self.tools.assemble_timeout,
        )
        return staging / GRUB_SUBDIR

    def build_standalone(
        self,
        tree: Path,
        public_key: Path,
        modules: Sequence[str],
        output: Path,
    ) -> None:
        """Build the standalone EFI image."""
        run(
            self.config.mkstandalone,
            "--directory",
            self.config.lib_directory,
            "--format",
            self.config.target,
            "--pubkey",
            public_key,
            "--modules",
            " ".join(modules),
            *self.config.extra_build_args,
            "--output",
            output,
            f"/boot/grub={tree}",
            timeout=self.tools.build_timeout,
        )

    def run_stock_installer(self, args: Sequence[str]) -> int:
        """Run the diverted stock installer."""
        logger.debug("falling back to %s", self.config.stock_installer)
        return passthrough(
            self.config.stock_installer,
            *args,
            timeout=self.tools.installer_timeout,
        )
