"""Signature engine: detached and embedded signatures over boot artifacts.

Every signing step is fail-fast. A single failed signature raises and aborts
the whole invocation; partially written signatures are left for the scoped
cleanup of the staging tree, or overwritten by the next successful run.
"""

import fnmatch
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from .config import BootConfig
from .errors import ExternalToolFailure, VerificationFailure
from .gnupg import KeyringService
from .keystore import SigningSession
from .sbsign import SigningService

logger = logging.getLogger(__name__)

SIGNATURE_SUFFIX = ".sig"


def signature_path_for(path: Path) -> Path:
    """Detached signature location for an artifact."""
    return path.with_name(path.name + SIGNATURE_SUFFIX)


def remove_signature(path: Path) -> bool:
    """Delete the detached signature of path.

    Returns:
        True if a signature was removed, False if there was none
    """
    signature = signature_path_for(path)
    try:
        signature.unlink()
    except FileNotFoundError:
        logger.debug("no signature at %s", signature)
        return False
    logger.info("removed %s", signature)
    return True


@dataclass(frozen=True)
class SignedArtifact:
    """A file together with how it was signed."""

    path: Path
    detached: bool = True
    embedded: bool = False

    @property
    def signature_path(self) -> Optional[Path]:
        return signature_path_for(self.path) if self.detached else None


def find_boot_artifacts(config: BootConfig) -> list[Path]:
    """Kernels and initramfs images in the boot directory, without signatures."""
    boot_dir = Path(config.boot_directory)
    if not boot_dir.is_dir():
        return []

    artifacts = []
    for path in sorted(boot_dir.iterdir()):
        if path.name.endswith(SIGNATURE_SUFFIX) or not path.is_file():
            continue
        if any(fnmatch.fnmatchcase(path.name, pattern) for pattern in config.artifact_patterns):
            artifacts.append(path)
    return artifacts


class SignatureEngine:
    """Applies signatures with an unlocked signing session."""

    def __init__(
        self,
        session: SigningSession,
        keyring: KeyringService,
        signer: SigningService,
        verify_after_sign: bool = True,
    ) -> None:
        """Initialize engine.

        Args:
            session: Unlocked key material
            keyring: Keyring used for detached signatures
            signer: Embedded (PE) signer
            verify_after_sign: Verify each signature right after creating it
        """
        self.session = session
        self.keyring = keyring
        self.signer = signer
        self.verify_after_sign = verify_after_sign

    @property
    def fingerprint(self) -> str:
        return self.session.identity.fingerprint

    def sign_detached(self, path: Path) -> SignedArtifact:
        """Write ``<path>.sig``.

        Raises:
            ExternalToolFailure: Signing failed or the new signature
                does not verify
        """
        signature = signature_path_for(path)
        self.keyring.detach_sign(self.fingerprint, self.session.passphrase_file, path, signature)

        if self.verify_after_sign and not self.keyring.verify_detached(path, signature):
            raise ExternalToolFailure(["gpg", "--verify", str(signature)], stderr="fresh signature does not verify")

        logger.debug("signed %s", path)
        return SignedArtifact(path=path)

    def sign_files(self, paths: Iterable[Path]) -> list[SignedArtifact]:
        """Detach-sign every path, stopping at the first failure."""
        return [self.sign_detached(path) for path in paths]

    def sign_embedded(self, path: Path) -> SignedArtifact:
        """Sign a PE image in place and check the result."""
        self.signer.sign(path, path)
        if self.verify_after_sign and not self.signer.verify(path):
            raise ExternalToolFailure(["sbverify", str(path)], stderr="fresh signature does not verify")

        logger.info("embedded signature in %s", path)
        return SignedArtifact(path=path, detached=False, embedded=True)

    def verify_presigned(self, source: Path) -> None:
        """Check the detached signature shipped with a pre-signed source.

        Raises:
            VerificationFailure: The signature is missing or does not match
        """
        signature = signature_path_for(source)
        if not source.is_file():
            raise VerificationFailure(source, "source file not found")
        if not signature.is_file():
            raise VerificationFailure(source, f"no signature at {signature}")
        if not self.keyring.verify_detached(source, signature):
            raise VerificationFailure(source, "signature does not match")

    def install_presigned(self, source: Path, destination: Path) -> list[SignedArtifact]:
        """Verify source, copy it to destination, and re-sign the copy.

        The copy receives an embedded signature followed by our detached one.
        Nothing is written when verification fails.
        """
        self.verify_presigned(source)
        logger.info("verified %s", source)

        shutil.copyfile(source, destination)
        return [self.sign_embedded(destination), self.sign_detached(destination)]

    def sign_artifact(self, path: Path, resign_embedded: bool = False) -> list[SignedArtifact]:
        """Sign one kernel or initramfs.

        Files already carrying an embedded signature are re-signed first when
        resign_embedded is set.
        """
        signed = []
        if resign_embedded and self.signer.has_signature(path):
            signed.append(self.sign_embedded(path))
        signed.append(self.sign_detached(path))
        return signed

    def sign_all(self, config: BootConfig) -> list[SignedArtifact]:
        """Sign every kernel and initramfs in the boot directory.

        Existing detached signatures are overwritten, never duplicated.
        """
        signed = []
        for path in find_boot_artifacts(config):
            signed.extend(self.sign_artifact(path, config.resign_embedded))
        logger.info("signed %d boot artifacts", len(signed))
        return signed
