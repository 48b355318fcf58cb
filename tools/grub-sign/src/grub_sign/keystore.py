"""Signing key store access and passphrase acquisition.

The key store is a directory holding a PEM certificate and private key for
embedded (PE) signatures plus a GnuPG home with the key used for detached
signatures. When any part of it is missing the store is simply absent and the
caller falls back to the stock installer.
"""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import AnyStr, Iterator, Optional, Protocol

from Crypto.Hash import SHA256
from rich.console import Console
from rich.prompt import Confirm, Prompt

from .config import KeyConfig, PassphraseConfig
from .errors import ConfigurationError, ExternalToolFailure, PassphraseDeclined, PassphraseInvalid
from .gnupg import KeyringService

logger = logging.getLogger(__name__)

# Verification modules GRUB needs for each OpenPGP key algorithm
VERIFICATION_MODULES = {
    "rsa": "gcry_rsa",
    "dsa": "gcry_dsa",
}


class SensitiveTemporaryDirectory(TemporaryDirectory[AnyStr]):
    """A temporary directory that holds key material or passphrases."""

    def __repr__(self) -> str:
        return super().__repr__() + " (SENSITIVE)"


@dataclass(frozen=True)
class SigningIdentity:
    """A usable signing keypair."""

    label: str
    fingerprint: str
    algorithm: str
    certificate: Path
    private_key: Path

    def check_supported(self) -> None:
        """Raise ConfigurationError unless GRUB can verify this key's signatures."""
        if self.algorithm not in VERIFICATION_MODULES:
            raise ConfigurationError(
                f"Signing key {self.fingerprint} uses {self.algorithm}, "
                f"which the bootloader cannot verify (use RSA or DSA)"
            )

    @property
    def verification_module(self) -> str:
        """GRUB module implementing this key's signature algorithm."""
        self.check_supported()
        return VERIFICATION_MODULES[self.algorithm]

    def certificate_hash(self) -> str:
        """SHA-256 fingerprint of the certificate file."""
        return SHA256.new(self.certificate.read_bytes()).hexdigest()


@dataclass(frozen=True)
class SigningSession:
    """Key material unlocked for one invocation.

    Both files live in a sensitive temporary directory that is removed when
    the session's context exits.
    """

    identity: SigningIdentity
    public_key: Path
    passphrase_file: Path


class PassphrasePrompt(Protocol):
    """Protocol for interactive passphrase entry."""

    def ask_passphrase(self, message: str) -> str:
        """Ask for the passphrase."""
        ...

    def confirm_retry(self) -> bool:
        """Ask whether to try again after an invalid passphrase."""
        ...


class ConsolePassphrasePrompt:
    """Passphrase prompt on the terminal."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console(stderr=True)

    def ask_passphrase(self, message: str) -> str:
        return Prompt.ask(message, password=True, console=self.console)

    def confirm_retry(self) -> bool:
        return Confirm.ask("Invalid passphrase: retry?", console=self.console)


def write_secret(path: Path, data: str) -> None:
    """Write data to a new file readable only by the owner."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(data)


class KeyStore:
    """Locates the signing identity and unlocks it for a session."""

    def __init__(self, config: KeyConfig, keyring: KeyringService) -> None:
        """Initialize key store.

        Args:
            config: Key store layout
            keyring: Keyring holding the detached-signature key
        """
        self.config = config
        self.keyring = keyring

    def probe(self) -> Optional[SigningIdentity]:
        """Find a usable signing identity.

        Returns:
            The identity, or None when the key directory, keyring key,
            certificate or private key is missing
        """
        if not self.config.key_dir.is_dir():
            logger.info("key directory %s not found", self.config.key_dir)
            return None

        key = self.keyring.find_signing_key(self.config.key_label)
        if key is None:
            logger.info("no signing key labelled %r in keyring", self.config.key_label)
            return None

        for path in (self.config.certificate_path, self.config.private_key_path):
            if not path.is_file():
                logger.info("%s not found", path)
                return None

        return SigningIdentity(
            label=self.config.key_label,
            fingerprint=key.fingerprint,
            algorithm=key.algorithm,
            certificate=self.config.certificate_path,
            private_key=self.config.private_key_path,
        )

    @contextmanager
    def session(
        self,
        identity: SigningIdentity,
        prompt: PassphrasePrompt,
        passphrase_config: Optional[PassphraseConfig] = None,
    ) -> Iterator[SigningSession]:
        """Export the public key and obtain a validated passphrase.

        Raises:
            PassphraseDeclined: The user gave up after invalid passphrases
        """
        passphrase_config = passphrase_config or PassphraseConfig()

        with SensitiveTemporaryDirectory(prefix="grub-sign-") as tmp:
            tmp_path = Path(tmp)
            public_key = tmp_path / "pubkey.gpg"
            self.keyring.export_public_key(identity.fingerprint, public_key)

            passphrase_file = tmp_path / "passphrase"
            self._acquire_passphrase(identity, prompt, passphrase_config, passphrase_file)

            yield SigningSession(
                identity=identity,
                public_key=public_key,
                passphrase_file=passphrase_file,
            )

    def _acquire_passphrase(
        self,
        identity: SigningIdentity,
        prompt: PassphrasePrompt,
        config: PassphraseConfig,
        passphrase_file: Path,
    ) -> None:
        attempts = max(1, config.max_attempts)
        for attempt in range(1, attempts + 1):
            write_secret(passphrase_file, prompt.ask_passphrase(config.prompt))
            try:
                self._validate_passphrase(identity, passphrase_file)
                return
            except PassphraseInvalid:
                logger.warning("invalid passphrase (attempt %d of %d)", attempt, attempts)
                passphrase_file.unlink()

            if attempt == attempts or not prompt.confirm_retry():
                break

        raise PassphraseDeclined("No valid passphrase was entered for the signing key")

    def _validate_passphrase(self, identity: SigningIdentity, passphrase_file: Path) -> None:
        """Test-sign a throwaway payload."""
        with SensitiveTemporaryDirectory(prefix="grub-sign-test-") as tmp:
            payload = Path(tmp) / "payload"
            payload.write_bytes(b"grub-sign passphrase check\n")
            try:
                self.keyring.detach_sign(
                    identity.fingerprint,
                    passphrase_file,
                    payload,
                    payload.with_name("payload.sig"),
                )
            except ExternalToolFailure as e:
                if e.timed_out or e.returncode is None:
                    raise
                raise PassphraseInvalid("Passphrase rejected by the keyring") from e
