"""UEFI Secure Boot (embedded PE) signing via sbsigntools."""

import logging
from pathlib import Path
from typing import Optional, Protocol

from .errors import ExternalToolFailure
from .tools import check, run

logger = logging.getLogger(__name__)


class SigningService(Protocol):
    """Protocol for embedded executable signatures."""

    def sign(self, path: Path, output: Path) -> None:
        """Embed a signature in path, writing the result to output."""
        ...

    def verify(self, path: Path) -> bool:
        """Check the embedded signature against our certificate."""
        ...

    def has_signature(self, path: Path) -> bool:
        """Report whether path carries any embedded signature."""
        ...


class SbsignSigner:
    """Embedded signing with ``sbsign`` and ``sbverify``."""

    def __init__(
        self,
        private_key: Path,
        certificate: Path,
        timeout: Optional[float] = None,
    ) -> None:
        """Initialize signer.

        Args:
            private_key: PEM private key
            certificate: PEM certificate matching private_key
            timeout: Seconds allowed for each invocation
        """
        self.private_key = private_key
        self.certificate = certificate
        self.timeout = timeout

    def sign(self, path: Path, output: Path) -> None:
        """Sign a PE binary; path and output may be the same file."""
        run(
            "sbsign",
            "--key",
            self.private_key,
            "--cert",
            self.certificate,
            "--output",
            output,
            path,
            timeout=self.timeout,
        )

    def verify(self, path: Path) -> bool:
        """Verify path against our certificate."""
        return check("sbverify", "--cert", self.certificate, path, timeout=self.timeout)

    def has_signature(self, path: Path) -> bool:
        """Check for an embedded signature table.

        Files that are not PE images at all count as unsigned.
        """
        try:
            output = run("sbverify", "--list", path, timeout=self.timeout)
        except ExternalToolFailure as e:
            if e.timed_out or e.returncode is None:
                raise
            logger.debug("no signature table in %s: %s", path, e)
            return False
        return "signature 1" in output
