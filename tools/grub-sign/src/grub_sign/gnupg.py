"""GnuPG keyring access for detached bootloader signatures."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from .errors import ExternalToolFailure
from .tools import run

logger = logging.getLogger(__name__)

# OpenPGP public-key algorithm ids (RFC 4880 section 9.1)
PUBKEY_ALGORITHMS = {
    "1": "rsa",
    "2": "rsa",
    "3": "rsa",
    "16": "elgamal",
    "17": "dsa",
    "18": "ecdh",
    "19": "ecdsa",
    "22": "eddsa",
}

# Validity flags of keys that can no longer sign
UNUSABLE_VALIDITY = ("e", "r", "d", "i")


@dataclass(frozen=True)
class KeyInfo:
    """A secret key found in the keyring."""

    fingerprint: str
    algorithm: str
    user_id: str


class KeyringService(Protocol):
    """Protocol for detached-signature keyrings."""

    def find_signing_key(self, label: str) -> Optional[KeyInfo]:
        """Find a secret signing key whose user id matches label."""
        ...

    def export_public_key(self, fingerprint: str, output: Path) -> None:
        """Write the binary public key to output."""
        ...

    def detach_sign(
        self,
        fingerprint: str,
        passphrase_file: Path,
        path: Path,
        signature_path: Path,
    ) -> None:
        """Write a binary detached signature of path to signature_path."""
        ...

    def verify_detached(self, path: Path, signature_path: Path) -> bool:
        """Check a detached signature against the keyring."""
        ...


def parse_secret_keys(output: str) -> list[KeyInfo]:
    """Parse ``gpg --with-colons --list-secret-keys`` output.

    Only valid keys with signing capability are returned; expired, revoked,
    disabled and invalid keys are skipped.
    """
    keys: list[KeyInfo] = []
    current: Optional[dict] = None

    def flush() -> None:
        if current and current.get("fingerprint") and current["can_sign"] and current["valid"]:
            keys.append(
                KeyInfo(
                    fingerprint=current["fingerprint"],
                    algorithm=current["algorithm"],
                    user_id=current.get("user_id", ""),
                )
            )

    for line in output.splitlines():
        fields = line.split(":")
        record = fields[0]
        if record == "sec":
            flush()
            capabilities = fields[11] if len(fields) > 11 else "s"
            current = {
                "algorithm": PUBKEY_ALGORITHMS.get(fields[3], fields[3]),
                "can_sign": "s" in capabilities.lower(),
                "valid": fields[1] not in UNUSABLE_VALIDITY,
            }
        elif current is None or len(fields) < 10:
            continue
        elif record == "fpr" and "fingerprint" not in current:
            current["fingerprint"] = fields[9]
        elif record == "uid" and "user_id" not in current:
            current["user_id"] = fields[9]
        elif record == "ssb":
            # Stop attributing fpr/uid records to the primary key
            flush()
            current = None
    flush()

    return keys


class GnuPGKeyring:
    """Keyring backed by the ``gpg`` command-line tool."""

    def __init__(self, home: Path, timeout: Optional[float] = None) -> None:
        """Initialize keyring.

        Args:
            home: GnuPG home directory holding the signing key
            timeout: Seconds allowed for each gpg invocation
        """
        self.home = home
        self.timeout = timeout

    def _gpg(self, *args: object) -> str:
        return run("gpg", "--homedir", self.home, "--batch", "--no-tty", *args, timeout=self.timeout)

    def find_signing_key(self, label: str) -> Optional[KeyInfo]:
        """Find the first secret signing key matching label."""
        if not self.home.is_dir():
            return None
        try:
            output = self._gpg("--with-colons", "--fingerprint", "--list-secret-keys", label)
        except ExternalToolFailure as e:
            if e.timed_out or e.returncode is None:
                raise
            # gpg exits non-zero when nothing matches
            logger.debug("no secret key matching %r: %s", label, e)
            return None

        keys = parse_secret_keys(output)
        return keys[0] if keys else None

    def export_public_key(self, fingerprint: str, output: Path) -> None:
        """Export the binary (non-armored) public key."""
        self._gpg("--yes", "--output", output, "--export", fingerprint)
        if not output.exists() or output.stat().st_size == 0:
            raise ExternalToolFailure(["gpg", "--export", fingerprint], stderr="exported key is empty")

    def detach_sign(
        self,
        fingerprint: str,
        passphrase_file: Path,
        path: Path,
        signature_path: Path,
    ) -> None:
        """Create a binary detached signature."""
        self._gpg(
            "--yes",
            "--pinentry-mode",
            "loopback",
            "--passphrase-file",
            passphrase_file,
            "--local-user",
            fingerprint,
            "--output",
            signature_path,
            "--detach-sign",
            path,
        )

    def verify_detached(self, path: Path, signature_path: Path) -> bool:
        """Verify a detached signature."""
        try:
            self._gpg("--verify", signature_path, path)
        except ExternalToolFailure as e:
            if e.timed_out or e.returncode is None:
                raise
            logger.debug("gpg rejected %s: %s", signature_path, e)
            return False
        return True
