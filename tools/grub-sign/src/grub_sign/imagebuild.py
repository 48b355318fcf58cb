"""Standalone signed bootloader image build."""

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from Crypto.Hash import SHA256

from .config import GrubConfig
from .errors import ExternalToolFailure
from .grub import ImageBuildService
from .keystore import SigningSession
from .staging import StagingTree

logger = logging.getLogger(__name__)

# Modules the image cannot verify anything without
REQUIRED_MODULES = ("pgp", "gcry_sha256", "gcry_sha512")


@dataclass(frozen=True)
class BuildResult:
    """A built standalone image."""

    path: Path
    digest: str
    modules: tuple[str, ...]


def image_digest(path: Path) -> str:
    """SHA-256 of an image file."""
    h = SHA256.new()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


class ImageBuilder:
    """Builds the standalone image embedding the public key."""

    def __init__(self, builder: ImageBuildService, config: GrubConfig) -> None:
        self.builder = builder
        self.config = config

    def modules_for(self, session: SigningSession) -> list[str]:
        """Modules built into the image for this signing key.

        Always includes the module for the key's signature algorithm, without
        which no signature could be checked at boot.
        """
        modules: list[str] = []
        for name in (*REQUIRED_MODULES, session.identity.verification_module, *self.config.modules):
            if name not in modules:
                modules.append(name)
        return modules

    def build(self, tree: StagingTree, session: SigningSession, output: Path) -> BuildResult:
        """Build the image from a signed staging tree.

        Args:
            tree: Staging tree whose files all carry detached signatures
            session: Unlocked signing session providing the public key
            output: Image path; normally inside the staging root

        Returns:
            BuildResult with the image digest
        """
        modules = self.modules_for(session)
        self.builder.build_standalone(tree.grub_dir, session.public_key, modules, output)
        if not output.is_file():
            raise ExternalToolFailure([self.config.mkstandalone], stderr=f"no image written to {output}")

        digest = image_digest(output)
        logger.info("built %s (sha256 %s)", output, digest)
        return BuildResult(path=output, digest=digest, modules=tuple(modules))


def install_image(source: Path, destination: Path) -> None:
    """Copy a finished image into place atomically."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    tmp = destination.with_name(destination.name + ".new")
    shutil.copyfile(source, tmp)
    os.replace(tmp, destination)
