"""Kernel lifecycle hook dispatch.

Package manager hooks describe one kernel or initramfs event per invocation.
The event is captured once, at the process boundary, into a
:class:`KernelSigningContext` that is passed explicitly to the dispatcher.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from .config import BootConfig
from .engine import SignatureEngine, SignedArtifact, remove_signature
from .errors import GrubSignError

logger = logging.getLogger(__name__)

ENV_ACTION_HOOK = "ACTION_HOOK"
ENV_KERNEL_ABI = "KERNEL_ABI"
ENV_KERNEL_PATH = "KERNEL_PATH"
ENV_ACTION = "ACTION"
ENV_SIGNED_SOURCE = "SIGNED_SOURCE"


class KernelAction(Enum):
    """Lifecycle events that change boot artifacts."""

    INSTALL = "postinst"
    REMOVE = "postrm"

    @classmethod
    def from_string(cls, value: str) -> "KernelAction":
        """Convert a hook action name to KernelAction."""
        mapping = {
            "postinst": cls.INSTALL,
            "install": cls.INSTALL,
            "postrm": cls.REMOVE,
            "remove": cls.REMOVE,
        }
        try:
            return mapping[value.lower()]
        except KeyError:
            raise ValueError(f"Unknown kernel hook action: {value!r}") from None


@dataclass(frozen=True)
class KernelSigningContext:
    """One kernel lifecycle event."""

    action: KernelAction
    abi: str = ""
    path: Optional[Path] = None
    signed_source: Optional[Path] = None

    @classmethod
    def from_environ(cls, environ: Mapping[str, str]) -> Optional["KernelSigningContext"]:
        """Read the hook environment protocol.

        Returns:
            The context, or None when not running from a hook
        """
        if ENV_ACTION_HOOK not in environ:
            return None

        path = environ.get(ENV_KERNEL_PATH, "")
        signed_source = environ.get(ENV_SIGNED_SOURCE, "")
        return cls(
            action=KernelAction.from_string(environ.get(ENV_ACTION, "")),
            abi=environ.get(ENV_KERNEL_ABI, ""),
            path=Path(path) if path else None,
            signed_source=Path(signed_source) if signed_source else None,
        )


def conventional_paths(abi: str, config: BootConfig) -> list[Path]:
    """Kernel paths for an ABI tag, in preference order."""
    if not abi:
        return []
    boot_dir = Path(config.boot_directory)
    return [boot_dir / f"{prefix}{abi}" for prefix in config.kernel_prefixes]


class HookDispatcher:
    """Turns lifecycle events into signing or signature removal."""

    def __init__(self, config: BootConfig) -> None:
        self.config = config

    def resolve_install_path(self, context: KernelSigningContext) -> Path:
        """Explicit path, else the first conventional path present.

        When a pre-signed source is given the destination need not exist yet,
        so the first convention is used.
        """
        if context.path is not None:
            return context.path

        candidates = conventional_paths(context.abi, self.config)
        if not candidates:
            raise GrubSignError("Kernel hook needs either a kernel path or an ABI tag")

        for candidate in candidates:
            if candidate.is_file():
                return candidate
        if context.signed_source is not None:
            return candidates[0]

        raise GrubSignError(f"No kernel image found for {context.abi} (tried {', '.join(map(str, candidates))})")

    def install(self, context: KernelSigningContext, engine: SignatureEngine) -> list[SignedArtifact]:
        """Sign a newly installed kernel or initramfs."""
        path = self.resolve_install_path(context)
        if context.signed_source is not None:
            return engine.install_presigned(context.signed_source, path)
        return engine.sign_artifact(path, self.config.resign_embedded)

    def remove(self, context: KernelSigningContext) -> list[Path]:
        """Delete signatures of a removed kernel, tolerating absence.

        Returns:
            Artifact paths whose signature was removed
        """
        if context.path is not None:
            targets = [context.path]
        else:
            targets = conventional_paths(context.abi, self.config)

        return [path for path in targets if remove_signature(path)]

    def dispatch(self, context: KernelSigningContext, engine: Optional[SignatureEngine]) -> None:
        """Run the action for one event."""
        logger.info("kernel hook %s abi=%r path=%s", context.action.value, context.abi, context.path)
        if context.action is KernelAction.REMOVE:
            self.remove(context)
            return
        if engine is None:
            raise GrubSignError("Signing a kernel requires an unlocked signing key")
        self.install(context, engine)
