"""GRUB Secure Boot Signing Tool.

This package keeps a GRUB boot chain signed end to end, including:
- Standalone GRUB image build with an embedded verification key
- Detached signatures over every embedded runtime file, kernel and initramfs
- Firmware boot entry registration
- Fallback to, and restoration of, the stock unsigned installer
"""

__version__ = "0.1.0"
__author__ = "grub-sign developers"

from .engine import SignatureEngine, SignedArtifact
from .hooks import KernelAction, KernelSigningContext
from .keystore import KeyStore, SigningIdentity
from .pipeline import SecureBootInstaller, Services

__all__ = [
    "SignatureEngine",
    "SignedArtifact",
    "KernelAction",
    "KernelSigningContext",
    "KeyStore",
    "SigningIdentity",
    "SecureBootInstaller",
    "Services",
]
