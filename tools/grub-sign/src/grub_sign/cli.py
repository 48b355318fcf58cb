"""Command-line interface for grub-sign."""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .config import SecureBootConfig, generate_default_config, resolve_config
from .engine import signature_path_for
from .errors import GrubSignError
from .hooks import KernelAction, KernelSigningContext
from .pipeline import InstallResult, SecureBootInstaller, Services

console = Console()
err_console = Console(stderr=True)

RAW_ARGS_KEY = "grub_sign.raw_args"


def setup_logging(level: str) -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_time=False, show_path=False)],
        force=True,
    )


def load_effective_config(config_path: Optional[str]) -> SecureBootConfig:
    try:
        return resolve_config(Path(config_path) if config_path else None)
    except (OSError, ValueError, ValidationError) as e:
        err_console.print(f"[bold red]Error:[/bold red] Invalid configuration: {e}")
        sys.exit(1)


def print_summary(result: InstallResult) -> None:
    table = Table(title="Secure Boot Install")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    if result.build is not None:
        table.add_row("Image", str(result.build.path.name))
        table.add_row("Image SHA-256", result.build.digest)
        table.add_row("Embedded Modules", " ".join(result.build.modules))
    table.add_row("Signed Artifacts", str(len(result.signed)))
    table.add_row("Stripped Stock Files", str(len(result.stripped)))
    err_console.print(table)


def run_installer(installer: SecureBootInstaller, verbose: bool, **kwargs) -> InstallResult:
    """Run the pipeline, turning fatal errors into exit status 1."""
    try:
        result = installer.install(**kwargs)
    except GrubSignError as e:
        err_console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(e.exit_code)

    if result.fell_back:
        sys.exit(result.exit_code)

    err_console.print("[bold green]✓[/bold green] Signed bootloader installed")
    if verbose:
        print_summary(result)
    return result


class RawArgsCommand(click.Command):
    """Command that keeps its argument list exactly as given.

    The option parser consumes ``--``, which the stock installer must still
    see, so the untouched list is stored in ``ctx.meta``.
    """

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        ctx.meta[RAW_ARGS_KEY] = list(args)
        return super().parse_args(ctx, args)


def split_installer_args(args: list[str]) -> tuple[bool, list[str]]:
    """Separate our --sign-all flag from the stock installer's arguments.

    The flag is only recognised before ``--``; everything from ``--`` on is
    forwarded verbatim.
    """
    sign_all = False
    forwarded = []
    for index, arg in enumerate(args):
        if arg == "--":
            forwarded.extend(args[index:])
            break
        if arg == "--sign-all":
            sign_all = True
        else:
            forwarded.append(arg)
    return sign_all, forwarded


@click.command(
    cls=RawArgsCommand,
    context_settings={"ignore_unknown_options": True, "allow_extra_args": True},
    add_help_option=False,
)
@click.pass_context
def install_main(ctx: click.Context) -> None:
    """Drop-in replacement for grub-install.

    Arguments other than --sign-all are passed to the stock installer when
    no signing key is available. --sign-all also signs every kernel and
    initramfs in /boot.
    """
    sign_all, installer_args = split_installer_args(ctx.meta[RAW_ARGS_KEY])
    config = load_effective_config(None)
    setup_logging(config.log_level)

    try:
        context = KernelSigningContext.from_environ(os.environ)
    except ValueError as e:
        err_console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    installer = SecureBootInstaller(config, Services.from_config(config, err_console))
    run_installer(
        installer,
        verbose=False,
        args=installer_args,
        sign_all=sign_all,
        context=context,
    )


@click.group()
@click.version_option(version=__version__, prog_name="grub-sign")
@click.option("--config", "-c", type=click.Path(exists=True), help="Configuration file path")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def main(ctx: click.Context, config: Optional[str], verbose: bool) -> None:
    """GRUB Secure Boot Signing Tool.

    Build and register a signed standalone GRUB image and keep detached
    signatures on kernels and initramfs images.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config"] = load_effective_config(config)
    setup_logging("INFO" if verbose else ctx.obj["config"].log_level)


def make_installer(ctx: click.Context) -> SecureBootInstaller:
    config: SecureBootConfig = ctx.obj["config"]
    return SecureBootInstaller(config, Services.from_config(config, err_console))


@main.command("kernel-hook")
@click.argument("action", type=click.Choice(["postinst", "postrm"]))
@click.argument("abi", default="")
@click.argument("path", required=False, type=click.Path())
@click.option("--signed-source", type=click.Path(), help="Pre-signed kernel to verify and install at PATH")
@click.pass_context
def kernel_hook(
    ctx: click.Context,
    action: str,
    abi: str,
    path: Optional[str],
    signed_source: Optional[str],
) -> None:
    """Re-sign after a kernel or initramfs is installed or removed."""
    context = KernelSigningContext(
        action=KernelAction.from_string(action),
        abi=abi,
        path=Path(path) if path else None,
        signed_source=Path(signed_source) if signed_source else None,
    )
    run_installer(make_installer(ctx), ctx.obj["verbose"], context=context)


@main.command("sign-all")
@click.pass_context
def sign_all(ctx: click.Context) -> None:
    """Trust and sign everything currently in the boot directory."""
    result = run_installer(make_installer(ctx), ctx.obj["verbose"], sign_all=True, fallback=False)
    console.print(f"[bold green]✓[/bold green] {len(result.signed)} signatures written")


@main.command()
@click.pass_context
def restore(ctx: click.Context) -> None:
    """Restore the stock bootloader (package removal)."""
    try:
        exit_code = make_installer(ctx).restore()
    except GrubSignError as e:
        err_console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(e.exit_code)

    if exit_code != 0:
        err_console.print(f"[bold red]✗[/bold red] Stock installer exited with status {exit_code}")
        sys.exit(exit_code)
    console.print("[bold green]✓[/bold green] Stock bootloader restored")


@main.command()
@click.pass_context
def keyinfo(ctx: click.Context) -> None:
    """Display information about the signing key."""
    config: SecureBootConfig = ctx.obj["config"]
    installer = make_installer(ctx)
    identity = installer.keystore.probe()
    if identity is None:
        console.print(f"[bold yellow]⚠[/bold yellow] No usable signing key in {config.keys.key_dir}")
        sys.exit(1)

    table = Table(title="Signing Key")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Label", identity.label)
    table.add_row("Fingerprint", identity.fingerprint)
    table.add_row("Algorithm", identity.algorithm)
    try:
        table.add_row("Verification Module", identity.verification_module)
    except GrubSignError:
        table.add_row("Verification Module", "[red]unsupported[/red]")
    table.add_row("Certificate", str(identity.certificate))
    table.add_row("Certificate SHA-256", identity.certificate_hash())
    console.print(table)


@main.command()
@click.argument("path", type=click.Path(exists=True))
@click.pass_context
def verify(ctx: click.Context, path: str) -> None:
    """Verify the detached signature of a boot artifact."""
    artifact = Path(path)
    signature = signature_path_for(artifact)
    if not signature.exists():
        console.print(f"[bold red]✗[/bold red] No signature at {signature}")
        sys.exit(1)

    if make_installer(ctx).services.keyring.verify_detached(artifact, signature):
        console.print(f"[bold green]✓[/bold green] {artifact} signature is valid")
    else:
        console.print(f"[bold red]✗[/bold red] {artifact} signature is invalid")
        sys.exit(1)


@main.command("config-template")
@click.option("--format", "fmt", type=click.Choice(["yaml", "json"]), default="yaml", help="Output format")
def config_template(fmt: str) -> None:
    """Print the default configuration."""
    click.echo(generate_default_config(fmt), nl=False)


if __name__ == "__main__":
    main()
