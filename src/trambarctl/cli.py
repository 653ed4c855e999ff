"""Typer-powered command line interface for ``trambar``.

Every command runs inside a structured operation scope so the outcome of each
invocation lands in ``operations.jsonl``. Guards (root access, Docker access,
configuration presence, running containers) run in a fixed order and the first
failing guard ends the command with a non-zero :class:`ExitCode`.
"""
from __future__ import annotations

import json
import os
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .bundle import (
    SKIPPED,
    BundleError,
    BundlePaths,
    ConfigurationBundle,
    InstallOptions,
    collect_install_options,
    default_install_options,
)
from .certificates import (
    CertificateDocument,
    CertificateRegistry,
    CertificateRegistryError,
    normalize_domain,
    normalize_email,
)
from .config import LINUX, AppConfig, ConfigError, load_config
from .credentials import CredentialError
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .network import host_name, is_port_available, is_public_server
from .process import CommandError, edit_file, is_installed, resolve_editor
from .prompts import Prompter
from .providers import (
    COMPOSE,
    DOCKER,
    CertbotError,
    CertbotProvider,
    ComposeError,
    ComposeProvider,
    DockerError,
    DockerProvider,
    PackageInstaller,
    PackageInstallError,
)
from .templates import TemplateEngine, TemplateError
from .tls import TLSError, TLSValidationSeverity, inspect_certificate

console = Console()

WEB_SERVICE = "nginx"

CONFIG_DIR_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    file_okay=False,
    help="Configuration folder (defaults to /etc/trambar on Linux).",
)
PREFIX_OPTION = typer.Option(
    None,
    "--prefix",
    "-p",
    help="Compose project name used as the container prefix.",
)
BUILD_OPTION = typer.Option(
    None,
    "--build",
    "-b",
    help="Image tag to install or update to.",
)
YES_OPTION = typer.Option(
    False,
    "--yes",
    "-y",
    help="Automatic yes to prompts.",
)
SETTINGS_FILE_OPTION = typer.Option(
    None,
    "--settings",
    dir_okay=False,
    help="Override the path to trambarctl's YAML settings file.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit JSON instead of a table.",
)

_INSTALL_QUESTIONS = {
    DOCKER: ("Docker is not installed on this system. Do you want to install it?", True),
    COMPOSE: (
        "Docker Compose is not installed on this system. Do you want to install it?",
        False,
    ),
}
_LABELS = {DOCKER: "Docker", COMPOSE: "Docker Compose"}
_SEVERITY_STYLE = {
    TLSValidationSeverity.OK: "[green]OK[/green]",
    TLSValidationSeverity.WARNING: "[yellow]EXPIRING[/yellow]",
    TLSValidationSeverity.ERROR: "[red]EXPIRED[/red]",
}

app = typer.Typer(
    add_completion=False,
    context_settings={"token_normalize_func": str.lower},
    help=textwrap.dedent(
        """
        Install and manage a Trambar server.

        Trambar runs as a set of Docker containers driven by the compose tool.
        This CLI creates the configuration folder, keeps the images up to date
        and looks after TLS certificates and the root account password.
        """
    ).strip(),
)
cert_app = typer.Typer(help="Manage certbot-issued certificates.")
config_app = typer.Typer(help="Inspect the resolved trambarctl settings.")

app.add_typer(cert_app, name="cert")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    prompter: Prompter
    logger: StructuredLogger
    templates: TemplateEngine
    paths: BundlePaths
    bundle: ConfigurationBundle
    docker: DockerProvider
    compose: ComposeProvider
    packages: PackageInstaller
    certbot: CertbotProvider
    certificates: CertificateRegistry


def _ensure_runtime(
    ctx: typer.Context,
    *,
    settings_file: Path | None = None,
    config_dir: Path | None = None,
    prefix: str | None = None,
    build: str | None = None,
    assume_yes: bool = False,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {
        "config_dir": str(config_dir) if config_dir is not None else None,
        "prefix": prefix,
        "build": build,
    }
    try:
        config = load_config(settings_file, overrides=overrides)
    except ConfigError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    prompter = Prompter(assume_yes=assume_yes, console=console, port_check=is_port_available)
    logger = StructuredLogger(config.logs_dir)
    templates = TemplateEngine.with_overrides(config.templates_dir)
    paths = BundlePaths(config.config_dir)
    bundle = ConfigurationBundle(
        paths=paths,
        templates=templates,
        confirm_overwrite=lambda path: prompter.confirm(f"Overwrite {path}?", False),
    )
    docker = DockerProvider(
        image_namespace=config.image_namespace,
        docker_bin=config.docker.docker_bin,
    )
    compose = ComposeProvider(
        project_dir=paths.root,
        project_name=config.prefix,
        docker_bin=config.docker.docker_bin,
        compose_bin=config.docker.compose_bin,
    )
    certbot = CertbotProvider(
        root=paths.certbot_dir,
        mode=config.certbot.mode,
        certbot_bin=config.certbot.bin,
        image=config.certbot.image,
        docker_bin=config.docker.docker_bin,
        staging=config.certbot.staging,
    )
    runtime = RuntimeContext(
        config=config,
        prompter=prompter,
        logger=logger,
        templates=templates,
        paths=paths,
        bundle=bundle,
        docker=docker,
        compose=compose,
        packages=PackageInstaller(system=config.system),
        certbot=certbot,
        certificates=CertificateRegistry(paths.certificate_registry),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show the trambarctl version and exit.",
    ),
    config_dir: Path | None = CONFIG_DIR_OPTION,
    prefix: str | None = PREFIX_OPTION,
    build: str | None = BUILD_OPTION,
    assume_yes: bool = YES_OPTION,
    settings_file: Path | None = SETTINGS_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    runtime = _ensure_runtime(
        ctx,
        settings_file=settings_file,
        config_dir=config_dir,
        prefix=prefix,
        build=build,
        assume_yes=assume_yes,
    )
    if version:
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"trambarctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=ExitCode.OK)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


# ----------------------------------------------------------------------
# Guards and shared helpers


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.FAILURE,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{escape(message)}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _complete(
    runtime: RuntimeContext,
    op: OperationScope,
    message: str,
    *,
    changed: int = 0,
    warnings: Sequence[str] = (),
    context: dict[str, object] | None = None,
) -> None:
    """Record the outcome, surfacing warnings gathered along the way."""
    collected = [*runtime.docker.warnings, *warnings]
    for warning in collected:
        console.print(f"[yellow]{escape(warning)}[/yellow]")
    if collected:
        op.warning(message, warnings=collected, changed=changed, context=context)
    else:
        op.success(message, changed=changed, context=context)


def _has_root_access(config: AppConfig) -> bool:
    if not config.requires_root:
        return True
    return os.geteuid() == 0


def _require_root(runtime: RuntimeContext, op: OperationScope) -> None:
    if not _has_root_access(runtime.config):
        _command_error(op, "Root access required", rc=ExitCode.ENVIRONMENT)
    op.add_step("root-access", status="ok")


def _require_docker(runtime: RuntimeContext, op: OperationScope) -> None:
    try:
        runtime.docker.ping()
    except DockerError as exc:
        if not is_installed(runtime.config.docker.docker_bin):
            message = "Docker is not installed"
        elif runtime.config.system == LINUX:
            message = str(exc) if _has_root_access(runtime.config) else "Root access required"
        else:
            message = f"{exc}\nIs Docker running?"
        _command_error(op, message, rc=ExitCode.ENVIRONMENT, errors=[str(exc)])
    op.add_step("docker-access", status="ok")


def _require_configuration(runtime: RuntimeContext, op: OperationScope) -> None:
    missing = runtime.bundle.missing_files()
    if missing:
        _command_error(op, f"File not found: {missing[0]}", rc=ExitCode.FAILURE)
    op.add_step("configuration", status="ok")


def _is_running(runtime: RuntimeContext, op: OperationScope) -> bool:
    try:
        running = runtime.docker.is_running()
    except DockerError as exc:
        _command_error(op, str(exc), rc=ExitCode.PROVIDER)
    op.add_step("running", status="yes" if running else "no")
    return running


def _require_running(runtime: RuntimeContext, op: OperationScope) -> None:
    if not _is_running(runtime, op):
        _command_error(op, "Trambar is not currently running", rc=ExitCode.FAILURE)


def _compose_step(runtime: RuntimeContext, op: OperationScope, action: str) -> None:
    """Run ``pull``, ``up``, ``down`` or ``restart`` through the compose tool."""
    try:
        getattr(runtime.compose, action)()
    except ComposeError as exc:
        op.add_step(f"compose.{action}", status="failed", detail=str(exc))
        _command_error(op, str(exc), rc=ExitCode.PROVIDER)
    op.add_step(f"compose.{action}", status="ok")


def _reload_web_server(runtime: RuntimeContext, op: OperationScope) -> list[str]:
    """Reload nginx inside the running deployment; return warnings."""
    try:
        if not runtime.docker.is_running():
            op.add_step("nginx.reload", status="skipped", detail="not running")
            return []
        runtime.compose.exec(WEB_SERVICE, ["nginx", "-s", "reload"])
    except (DockerError, ComposeError) as exc:
        op.add_step("nginx.reload", status="failed", detail=str(exc))
        return [f"Unable to reload the web server: {exc}"]
    op.add_step("nginx.reload", status="ok")
    return []


def _report_file(path: Path, outcome: str) -> None:
    if outcome != SKIPPED:
        console.print(f"Saving {escape(str(path))}")


def _script_name(ctx: typer.Context) -> str:
    return ctx.find_root().info_name or "trambar"


# ----------------------------------------------------------------------
# Installation


def _create_configuration(
    runtime: RuntimeContext,
    op: OperationScope,
    dev_source: Path | None,
) -> tuple[int, InstallOptions]:
    """Prompt for the installation answers and write the bundle."""
    defaults = default_install_options(
        runtime.config,
        public=is_public_server(),
        hostname=host_name(),
    )
    if dev_source is not None:
        defaults.dev_source = str(dev_source.resolve())
    try:
        options = collect_install_options(runtime.prompter, runtime.paths, defaults)
        password = runtime.prompter.password(
            "Password for Trambar root account:",
            runtime.config.default_password,
        )
        outcomes = runtime.bundle.render(
            options,
            on_file=_report_file,
            tls_days=runtime.config.tls.self_signed_days,
            tls_key_size=runtime.config.tls.key_size,
        )
        outcome = runtime.bundle.save_password(password)
    except (
        BundleError,
        CertificateRegistryError,
        CredentialError,
        TemplateError,
        TLSError,
    ) as exc:
        op.add_step("configuration", status="failed", detail=str(exc))
        _command_error(op, str(exc), rc=ExitCode.VALIDATION)
    _report_file(runtime.paths.credentials, outcome)
    outcomes[runtime.paths.credentials] = outcome
    written = sum(1 for value in outcomes.values() if value != SKIPPED)
    op.add_step("configuration", status="ok", detail=f"{written} file(s) written")
    return written, options


def _hint_domain(options: InstallOptions) -> str:
    try:
        return normalize_domain(options.server_name)
    except CertificateRegistryError:
        return "DOMAIN"


def _install_component(runtime: RuntimeContext, op: OperationScope, component: str) -> None:
    """Install Docker or the compose tool when it is missing."""
    if component == DOCKER:
        present = is_installed(runtime.config.docker.docker_bin)
    else:
        present = runtime.compose.is_available()
    if present:
        op.add_step(f"{component}.installed", status="ok")
        return

    try:
        runtime.packages.plan(component)
    except PackageInstallError as exc:
        _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)

    question, default = _INSTALL_QUESTIONS[component]
    if not runtime.prompter.confirm(question, default):
        _command_error(op, f"{_LABELS[component]} is required.", rc=ExitCode.FAILURE)
    try:
        runtime.packages.install(
            component,
            on_step=lambda step: console.print(f"$ {escape(' '.join(step))}", highlight=False),
        )
    except PackageInstallError as exc:
        op.add_step(f"{component}.install", status="failed", detail=str(exc))
        _command_error(op, str(exc), rc=ExitCode.PROVIDER)
    op.add_step(f"{component}.install", status="ok")


@app.command()
def install(
    ctx: typer.Context,
    dev: Path | None = typer.Option(
        None,
        "--dev",
        exists=True,
        file_okay=False,
        help="Mount this Trambar source checkout into the containers.",
    ),
) -> None:
    """Create the configuration, install Docker and pull the images."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "install",
        args={"dev": str(dev) if dev else None},
        target={"kind": "bundle", "path": str(runtime.paths.root)},
    ) as op:
        _require_root(runtime, op)
        written, options = _create_configuration(runtime, op, dev or runtime.config.dev.source_dir)
        _install_component(runtime, op, DOCKER)
        _install_component(runtime, op, COMPOSE)
        _require_docker(runtime, op)
        _compose_step(runtime, op, "pull")
        console.print()
        console.print("Installation complete")
        console.print(f'Run "{_script_name(ctx)} start" to start Trambar')
        if options.certbot:
            command = f"{_script_name(ctx)} cert add {_hint_domain(options)}"
            console.print(f'Run "{command}" to request a certificate')
        _complete(runtime, op, "Installation complete.", changed=written)


@app.command()
def uninstall(
    ctx: typer.Context,
    purge: bool = typer.Option(
        False,
        "--purge",
        help="Also delete the configuration folder (asks for confirmation).",
    ),
) -> None:
    """Stop the containers and remove the Trambar images."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "uninstall",
        args={"purge": purge},
        target={"kind": "bundle", "path": str(runtime.paths.root)},
    ) as op:
        _require_root(runtime, op)
        warnings: list[str] = []
        try:
            running = runtime.docker.is_running()
            images = runtime.docker.images()
        except DockerError as exc:
            op.add_step("docker", status="unreachable", detail=str(exc))
            warnings.append(f"Docker is unreachable, skipping containers and images: {exc}")
            running, images = False, []
        if running:
            _compose_step(runtime, op, "down")
        try:
            for image in images:
                runtime.docker.remove_image(image.id)
                op.add_step("image.remove", status="ok", detail=image.repository)
        except DockerError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER)
        changed = len(images)
        if purge and runtime.bundle.exists():
            question = f"Remove configuration folder {runtime.paths.root}?"
            if runtime.prompter.confirm(question, False):
                try:
                    runtime.bundle.remove()
                except BundleError as exc:
                    _command_error(op, str(exc), rc=ExitCode.FAILURE)
                op.add_step("configuration.remove", status="ok")
                changed += 1
        _complete(runtime, op, "Trambar uninstalled.", changed=changed, warnings=warnings)


# ----------------------------------------------------------------------
# Container lifecycle


@app.command()
def start(ctx: typer.Context) -> None:
    """Start the Trambar containers."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("start", target={"kind": "project", "name": runtime.config.prefix}) as op:
        _require_docker(runtime, op)
        _require_configuration(runtime, op)
        _compose_step(runtime, op, "up")
        _complete(runtime, op, "Trambar started.", changed=1)


@app.command()
def stop(ctx: typer.Context) -> None:
    """Stop and remove the Trambar containers."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("stop", target={"kind": "project", "name": runtime.config.prefix}) as op:
        _require_docker(runtime, op)
        _require_configuration(runtime, op)
        _require_running(runtime, op)
        _compose_step(runtime, op, "down")
        _complete(runtime, op, "Trambar stopped.", changed=1)


@app.command()
def restart(ctx: typer.Context) -> None:
    """Restart the running Trambar containers."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("restart", target={"kind": "project", "name": runtime.config.prefix}) as op:
        _require_docker(runtime, op)
        _require_configuration(runtime, op)
        _require_running(runtime, op)
        _compose_step(runtime, op, "restart")
        _complete(runtime, op, "Trambar restarted.", changed=1)


@app.command()
def update(ctx: typer.Context) -> None:
    """Pull newer images, recreate running containers and prune old images."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "update",
        args={"build": runtime.config.build},
        target={"kind": "project", "name": runtime.config.prefix},
    ) as op:
        _require_docker(runtime, op)
        _require_configuration(runtime, op)
        was_running = _is_running(runtime, op)
        _compose_step(runtime, op, "pull")
        if was_running:
            _compose_step(runtime, op, "up")

        warnings: list[str] = []
        try:
            images = runtime.docker.images()
        except DockerError as exc:
            images = []
            warnings.append(str(exc))
        for image in images:
            if not image.untagged:
                continue
            try:
                runtime.docker.remove_image(image.id)
            except DockerError as exc:
                op.add_step("image.remove", status="failed", detail=image.id)
                warnings.append(str(exc))
            else:
                op.add_step("image.remove", status="ok", detail=image.id)
        _complete(runtime, op, "Trambar updated.", changed=1, warnings=warnings)


@app.command()
def logs(
    ctx: typer.Context,
    service: str | None = typer.Argument(None, help="Only show logs of this service."),
    follow: bool = typer.Option(True, "--follow/--no-follow", help="Keep streaming new output."),
    tail: int | None = typer.Option(None, "--tail", min=0, help="Number of lines to show."),
) -> None:
    """Show the container logs."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "logs",
        args={"service": service, "follow": follow, "tail": tail},
        target={"kind": "project", "name": runtime.config.prefix},
    ) as op:
        _require_docker(runtime, op)
        _require_running(runtime, op)
        try:
            runtime.compose.logs(follow=follow, tail=tail, service=service)
        except ComposeError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER)
        except KeyboardInterrupt:
            op.add_step("compose.logs", status="interrupted")
        _complete(runtime, op, "Displayed container logs.")


@app.command()
def stats(ctx: typer.Context) -> None:
    """Show live resource usage of the Trambar containers."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("stats", target={"kind": "project", "name": runtime.config.prefix}) as op:
        _require_docker(runtime, op)
        try:
            containers = runtime.docker.containers()
        except DockerError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER)
        if not containers:
            _command_error(op, "Trambar is not currently running", rc=ExitCode.FAILURE)
        names = sorted(container.name for container in containers)
        try:
            runtime.docker.stats(names)
        except DockerError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER)
        except KeyboardInterrupt:
            op.add_step("docker.stats", status="interrupted")
        _complete(runtime, op, "Displayed container stats.", context={"containers": names})


# ----------------------------------------------------------------------
# Configuration editing


@app.command()
def password(ctx: typer.Context) -> None:
    """Change the password of the Trambar root account."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "password",
        target={"kind": "credentials", "path": str(runtime.paths.credentials)},
    ) as op:
        _require_root(runtime, op)
        _require_configuration(runtime, op)
        value = runtime.prompter.password("Password:")
        try:
            outcome = runtime.bundle.save_password(value)
        except BundleError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)
        except CredentialError as exc:
            _command_error(op, str(exc), rc=ExitCode.FAILURE)
        if outcome == SKIPPED:
            op.success("Password left unchanged.", changed=0)
            return
        _report_file(runtime.paths.credentials, outcome)
        op.success("Password updated.", changed=1)


def _edit(ctx: typer.Context, command: str, path_of: str) -> None:
    runtime = _get_runtime(ctx)
    path: Path = getattr(runtime.paths, path_of)
    with runtime.logger.operation(command, target={"kind": "file", "path": str(path)}) as op:
        _require_root(runtime, op)
        editor = resolve_editor(runtime.config.editor, runtime.config.system)
        op.add_step("editor", status="ok", detail=editor)
        try:
            edit_file(editor, path)
        except CommandError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER)
        op.success(f"Edited {path}.", changed=0)


@app.command()
def compose(ctx: typer.Context) -> None:
    """Edit docker-compose.yml in your editor."""
    _edit(ctx, "compose", "compose_file")


@app.command()
def env(ctx: typer.Context) -> None:
    """Edit the .env file in your editor."""
    _edit(ctx, "env", "env_file")


# ----------------------------------------------------------------------
# Certificates


def _load_certificates(runtime: RuntimeContext, op: OperationScope) -> CertificateDocument:
    try:
        return runtime.certificates.load()
    except CertificateRegistryError as exc:
        _command_error(op, str(exc), rc=ExitCode.VALIDATION)


@cert_app.command("add")
def cert_add(
    ctx: typer.Context,
    domain: str = typer.Argument(..., help="Domain name to request a certificate for."),
    email: str | None = typer.Option(None, "--email", help="Contact e-mail for the CA."),
) -> None:
    """Request a certificate for DOMAIN through certbot."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "cert add",
        args={"domain": domain, "email": email},
        target={"kind": "certificate", "domain": domain},
    ) as op:
        _require_root(runtime, op)
        _require_configuration(runtime, op)
        try:
            name = normalize_domain(domain)
            document = _load_certificates(runtime, op)
            contact = email or document.email or runtime.prompter.text("Contact e-mail:")
            if not contact:
                _command_error(op, "A contact e-mail is required.", rc=ExitCode.VALIDATION)
            contact = normalize_email(contact)
            added = runtime.certificates.add_domain(name)
        except CertificateRegistryError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)
        op.add_step("registry.add", status="ok" if added else "exists", detail=name)

        try:
            runtime.certbot.ensure_dirs()
            runtime.certbot.issue(name, contact)
        except (CertbotError, OSError) as exc:
            op.add_step("certbot.issue", status="failed", detail=str(exc))
            errors = [str(exc)]
            if added:
                try:
                    runtime.certificates.remove_domain(name)
                except CertificateRegistryError as rollback:
                    op.add_step("registry.rollback", status="failed", detail=str(rollback))
                    errors.append(str(rollback))
            _command_error(op, str(exc), rc=ExitCode.PROVIDER, errors=errors)
        op.add_step("certbot.issue", status="ok", detail=name)

        try:
            if contact != document.email:
                runtime.certificates.set_email(contact)
        except CertificateRegistryError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)
        op.add_step("registry.email", status="ok", detail=contact)

        try:
            runtime.bundle.render_site(name)
        except (TemplateError, OSError) as exc:
            _command_error(op, str(exc), rc=ExitCode.FAILURE)
        warnings = _reload_web_server(runtime, op)
        console.print(f"Certificate issued for {name}")
        _complete(runtime, op, f"Certificate issued for {name}.", changed=1, warnings=warnings)


@cert_app.command("remove")
def cert_remove(
    ctx: typer.Context,
    domain: str = typer.Argument(..., help="Domain name to stop managing."),
) -> None:
    """Stop serving DOMAIN over HTTPS and delete its certificate."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "cert remove",
        args={"domain": domain},
        target={"kind": "certificate", "domain": domain},
    ) as op:
        _require_root(runtime, op)
        try:
            name = normalize_domain(domain)
            removed = runtime.certificates.remove_domain(name)
        except CertificateRegistryError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)
        if not removed:
            _command_error(op, f"Domain '{name}' is not registered.", rc=ExitCode.VALIDATION)
        op.add_step("registry.remove", status="ok", detail=name)

        runtime.bundle.remove_site(name)
        warnings = _reload_web_server(runtime, op)
        if runtime.prompter.confirm(f"Delete the certificate for {name}?", False):
            try:
                runtime.certbot.delete(name)
            except CertbotError as exc:
                op.add_step("certbot.delete", status="failed", detail=str(exc))
                _command_error(op, str(exc), rc=ExitCode.PROVIDER)
            op.add_step("certbot.delete", status="ok", detail=name)
        console.print(f"Removed {name}")
        _complete(runtime, op, f"Removed {name}.", changed=1, warnings=warnings)


@cert_app.command("list")
def cert_list(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List registered domains and the expiry of their certificates."""
    runtime = _get_runtime(ctx)
    warn_days = runtime.config.tls.warn_expiry_days
    with runtime.logger.operation(
        "cert list",
        args={"json": json_output},
        target={"kind": "certificate"},
    ) as op:
        document = _load_certificates(runtime, op)
        entries: list[dict[str, object]] = []
        for name in document.domains:
            entry: dict[str, object] = {"domain": name, "certificate": None, "status": "missing"}
            path = runtime.certbot.certificate_path(name)
            if path.exists():
                try:
                    info = inspect_certificate(path)
                except TLSError as exc:
                    entry["status"] = "error"
                    entry["error"] = str(exc)
                else:
                    entry["certificate"] = info.to_dict()
                    entry["status"] = info.severity(warn_days).value
            entries.append(entry)

        if json_output:
            console.print_json(data={"email": document.email, "domains": entries})
            op.success("Rendered certificates as JSON.", changed=0)
            return

        console.print(f"Contact e-mail: {escape(document.email or '(not set)')}")
        if not entries:
            console.print("No domains registered.")
            op.success("No domains registered.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Domain", style="bold")
        table.add_column("Expires")
        table.add_column("Days", justify="right")
        table.add_column("Status")
        for entry in entries:
            certificate = entry["certificate"]
            if isinstance(certificate, dict):
                expires = str(certificate["not_valid_after"])[:10]
                remaining = str(certificate["days_remaining"])
                status = _SEVERITY_STYLE[TLSValidationSeverity(entry["status"])]
            else:
                expires = remaining = "-"
                status = f"[red]{str(entry['status']).upper()}[/red]"
            table.add_row(str(entry["domain"]), expires, remaining, status)
        console.print(table)
        op.success("Rendered certificate table.", changed=0)


@cert_app.command("renew")
def cert_renew(ctx: typer.Context) -> None:
    """Renew every certificate that is close to expiry."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("cert renew", target={"kind": "certificate"}) as op:
        _require_root(runtime, op)
        document = _load_certificates(runtime, op)
        if not document.domains:
            console.print("No domains registered.")
            op.success("No domains registered.", changed=0)
            return
        try:
            runtime.certbot.ensure_dirs()
            runtime.certbot.renew()
        except (CertbotError, OSError) as exc:
            op.add_step("certbot.renew", status="failed", detail=str(exc))
            _command_error(op, str(exc), rc=ExitCode.PROVIDER)
        op.add_step("certbot.renew", status="ok")
        warnings = _reload_web_server(runtime, op)
        _complete(
            runtime,
            op,
            "Certificates renewed.",
            changed=len(document.domains),
            warnings=warnings,
        )


@cert_app.command("email")
def cert_email(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="Contact e-mail registered with the CA."),
) -> None:
    """Set the contact e-mail used for certificate requests."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "cert email",
        args={"address": address},
        target={"kind": "certificate"},
    ) as op:
        _require_root(runtime, op)
        try:
            contact = runtime.certificates.set_email(address)
        except CertificateRegistryError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)
        console.print(f"Contact e-mail set to {escape(contact)}")
        op.success("Contact e-mail updated.", changed=1)


# ----------------------------------------------------------------------
# Settings


@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Display the effective settings after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, escape(rendered))

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
