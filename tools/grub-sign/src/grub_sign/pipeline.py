"""The secure install pipeline.

One invocation either leaves a fully signed, registered bootloader or
aborts on the first failure; the stock installer is used unchanged when no
signing key is available. Order of operations:

1. probe the key store (absent: run the stock installer and stop)
2. require root, take the global lock
3. export the public key and obtain a validated passphrase
4. assemble and detach-sign the staging tree
5. build the standalone image and embed its signature
6. install the image and register a single firmware entry
7. strip the unsigned stock boot files
8. act on a kernel hook event and/or bulk-sign the boot directory
"""

import logging
import os
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from rich.console import Console

from .config import SecureBootConfig
from .efiboot import EfibootmgrService, FirmwareBootService
from .engine import SignatureEngine, SignedArtifact
from .errors import ConfigurationError, PrivilegeError
from .gnupg import GnuPGKeyring, KeyringService
from .grub import GrubImageBuilder, ImageBuildService
from .hooks import HookDispatcher, KernelAction, KernelSigningContext
from .imagebuild import BuildResult, ImageBuilder, install_image
from .keystore import ConsolePassphrasePrompt, KeyStore, PassphrasePrompt, SigningIdentity, SigningSession
from .locking import exclusive_lock, exit_on_signals
from .registrar import BootRegistrar
from .rollback import fall_back, restore, strip_stock_artifacts
from .sbsign import SbsignSigner, SigningService
from .staging import StagingAssembler

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """External services the pipeline depends on."""

    keyring: KeyringService
    builder: ImageBuildService
    firmware: FirmwareBootService
    prompt: PassphrasePrompt
    signer_factory: Callable[[SigningIdentity], SigningService]

    @classmethod
    def from_config(cls, config: SecureBootConfig, console: Optional[Console] = None) -> "Services":
        """Build the real subprocess-backed services."""
        timeout = config.tools.sign_timeout
        return cls(
            keyring=GnuPGKeyring(config.keys.gnupg_home, timeout=timeout),
            builder=GrubImageBuilder(config.grub, config.tools),
            firmware=EfibootmgrService(timeout=config.tools.firmware_timeout),
            prompt=ConsolePassphrasePrompt(console),
            signer_factory=lambda identity: SbsignSigner(
                identity.private_key, identity.certificate, timeout=timeout
            ),
        )


@dataclass(frozen=True)
class InstallResult:
    """Outcome of one pipeline run."""

    exit_code: int = 0
    fell_back: bool = False
    build: Optional[BuildResult] = None
    signed: tuple[SignedArtifact, ...] = ()
    stripped: tuple[Path, ...] = ()


class SecureBootInstaller:
    """Runs the secure install pipeline."""

    def __init__(
        self,
        config: SecureBootConfig,
        services: Services,
        geteuid: Callable[[], int] = os.geteuid,
    ) -> None:
        """Initialize installer.

        Args:
            config: Effective configuration
            services: External service adapters
            geteuid: Effective uid lookup
        """
        self.config = config
        self.services = services
        self.geteuid = geteuid
        self.keystore = KeyStore(config.keys, services.keyring)
        self.registrar = BootRegistrar(services.firmware, config.efi)
        self.dispatcher = HookDispatcher(config.boot)

    def check_privilege(self) -> None:
        if self.config.require_root and self.geteuid() != 0:
            raise PrivilegeError("grub-sign must be run as root")

    def _enter_operation(self, stack: ExitStack) -> None:
        self.check_privilege()
        stack.enter_context(exit_on_signals())
        stack.enter_context(exclusive_lock(Path(self.config.lock_file), self.config.lock_timeout))

    def _engine(self, session: SigningSession) -> SignatureEngine:
        return SignatureEngine(
            session,
            self.services.keyring,
            self.services.signer_factory(session.identity),
            verify_after_sign=self.config.verify_after_sign,
        )

    def install(
        self,
        args: Sequence[str] = (),
        sign_all: bool = False,
        context: Optional[KernelSigningContext] = None,
        fallback: bool = True,
    ) -> InstallResult:
        """Run the pipeline.

        Args:
            args: Stock installer arguments, used only on fallback
            sign_all: Bulk-sign every kernel and initramfs afterwards
            context: Kernel lifecycle event to act on
            fallback: Run the stock installer when no key is found;
                otherwise a missing key is a ConfigurationError

        Returns:
            InstallResult describing what was done
        """
        identity = self.keystore.probe()
        if identity is None:
            if not fallback:
                raise ConfigurationError(f"No usable signing key in {self.config.keys.key_dir}")
            return InstallResult(exit_code=fall_back(self.services.builder, args), fell_back=True)

        with ExitStack() as stack:
            self._enter_operation(stack)
            identity.check_supported()

            session = stack.enter_context(
                self.keystore.session(identity, self.services.prompt, self.config.passphrase)
            )
            engine = self._engine(session)

            if context is not None and context.action is KernelAction.INSTALL and context.signed_source:
                engine.verify_presigned(context.signed_source)

            signed: list[SignedArtifact] = []
            with StagingAssembler(self.services.builder, self.config.grub).assemble() as tree:
                signed.extend(engine.sign_files(tree.files()))

                build = ImageBuilder(self.services.builder, self.config.grub).build(
                    tree, session, tree.root / self.config.efi.image_name
                )
                signed.append(engine.sign_embedded(build.path))
                install_image(build.path, self.config.efi.image_path)

            logger.info("installed %s", self.config.efi.image_path)
            self.registrar.register()
            stripped = strip_stock_artifacts(self.config.efi, self.config.boot)

            if context is not None:
                self.dispatcher.dispatch(context, engine)
            if sign_all:
                signed.extend(engine.sign_all(self.config.boot))

        return InstallResult(build=build, signed=tuple(signed), stripped=tuple(stripped))

    def restore(self) -> int:
        """Return to the stock bootloader after package removal."""
        with ExitStack() as stack:
            self._enter_operation(stack)
            return restore(self.services.builder, self.registrar, self.config.efi, self.config.grub)
