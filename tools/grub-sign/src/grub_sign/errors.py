"""Error taxonomy for grub-sign.

Key absence is not an error. A missing or incomplete key store is reported
by :meth:`grub_sign.keystore.KeyStore.probe` returning ``None``, which
routes the caller to the stock installer.
"""

from typing import Optional, Sequence


class GrubSignError(Exception):
    """Base class for fatal grub-sign failures."""

    exit_code = 1


class ConfigurationError(GrubSignError):
    """Configuration or key material is present but unusable."""


class PrivilegeError(GrubSignError):
    """The operation requires root privileges."""


class PassphraseInvalid(GrubSignError):
    """The entered passphrase failed the test signature."""


class PassphraseDeclined(GrubSignError):
    """The user declined to retry after an invalid passphrase."""


class VerificationFailure(GrubSignError):
    """A signature did not verify against its artifact."""

    def __init__(self, path: object, details: str = "") -> None:
        self.path = path
        self.details = details
        message = f"Signature verification failed for {path}"
        if details:
            message += f": {details}"
        super().__init__(message)


class ExternalToolFailure(GrubSignError):
    """An external tool exited unsuccessfully, timed out or was missing."""

    def __init__(
        self,
        command: Sequence[object],
        returncode: Optional[int] = None,
        stderr: str = "",
        timed_out: bool = False,
    ) -> None:
        self.command = [str(arg) for arg in command]
        self.returncode = returncode
        self.stderr = stderr.strip()
        self.timed_out = timed_out

        tool = self.command[0] if self.command else "<unknown>"
        if timed_out:
            message = f"{tool} timed out"
        elif returncode is None:
            message = f"{tool} could not be executed"
        else:
            message = f"{tool} failed with exit code {returncode}"
        if self.stderr:
            message += f": {self.stderr}"
        super().__init__(message)
