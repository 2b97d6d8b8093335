"""
Command Line Interface for stackplan.
"""
import json
import logging
import os
import click
from ..errors import SchemaError, StackPlanError
from ..MANAGERS.plan_orchestrator import PlanOrchestrator
from ..MODELS.settings import DEFAULT_COMPOSE_FILE, PlanSettings

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def configure_logging(log_level: str = "WARNING") -> None:
    """
    Configures the root logger. Log records go to stderr so that a plan
    written to stdout stays clean.
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="[%(levelname)s] %(name)s: %(message)s",
        force=True,
    )


def _settings(ctx, **overrides) -> PlanSettings:
    return PlanSettings(
        files=ctx.obj["files"],
        project_dir=ctx.obj["project_dir"],
        env_file=ctx.obj["env_file"],
        **overrides,
    )


def _report(ctx, error: StackPlanError):
    """
    Prints a structured error description to stderr and exits with the error's code.
    """
    if ctx.obj.get("json_errors"):
        click.echo(json.dumps(error.to_dict(), sort_keys=True), err=True)
    else:
        click.echo(f"error: {error.kind}", err=True)
        click.echo(f"message: {error.message}", err=True)
        for key, value in sorted(error.context.items()):
            if isinstance(value, list):
                value = ", ".join(str(v) for v in value)
            click.echo(f"{key}: {value}", err=True)
    ctx.exit(error.exit_code)


@click.group()
@click.option('--file', '-f', 'files', multiple=True, envvar='STACKPLAN_FILE',
              help='Manifest file; repeat to add overlays, applied in order')
@click.option('--project-dir', default=None, help='Project directory (default: directory of the first file)')
@click.option('--env-file', default=None, help='Variables for interpolation (default: <project-dir>/.env)')
@click.option('--log-level', type=click.Choice(LOG_LEVELS, case_sensitive=False), default='WARNING',
              help='Logging level')
@click.option('--json-errors', is_flag=True, help='Report errors as a JSON object')
@click.pass_context
def cli(ctx, files, project_dir, env_file, log_level, json_errors):
    """
    stackplan - compose manifest merger and validator.

    Merges a base manifest with overlays, checks secrets and network
    reachability, and emits one canonical plan for the container runtime.
    """
    configure_logging(log_level)
    ctx.ensure_object(dict)
    ctx.obj['files'] = list(files) or [DEFAULT_COMPOSE_FILE]
    ctx.obj['project_dir'] = project_dir
    ctx.obj['env_file'] = env_file
    ctx.obj['json_errors'] = json_errors


@cli.command()
@click.option('--output', '-o', default=None, help='Write the plan to a file instead of stdout')
@click.option('--format', 'output_format', type=click.Choice(['yaml', 'json']), default='yaml')
@click.option('--skip-secrets', is_flag=True, help='Do not check secret backing files')
@click.option('--skip-env-files', is_flag=True, help='Do not check env_file entries')
@click.pass_context
def plan(ctx, output, output_format, skip_secrets, skip_env_files):
    """Emit the merged, validated plan."""
    settings = _settings(ctx, output_format=output_format,
                         check_secrets=not skip_secrets, check_env_files=not skip_env_files)
    try:
        result = PlanOrchestrator(settings).build()
    except StackPlanError as e:
        _report(ctx, e)
        return

    if output:
        parent = os.path.dirname(os.path.abspath(output))
        os.makedirs(parent, exist_ok=True)
        with open(output, 'w') as f:
            f.write(result.document)
        click.echo(f"Plan written to {output} (sha256 {result.digest})", err=True)
    else:
        click.echo(result.document, nl=False)


@cli.command()
@click.option('--skip-secrets', is_flag=True, help='Do not check secret backing files')
@click.option('--skip-env-files', is_flag=True, help='Do not check env_file entries')
@click.pass_context
def validate(ctx, skip_secrets, skip_env_files):
    """Check the manifests without emitting a plan."""
    settings = _settings(ctx, check_secrets=not skip_secrets, check_env_files=not skip_env_files)
    try:
        result = PlanOrchestrator(settings).build()
    except StackPlanError as e:
        _report(ctx, e)
        return
    click.echo(f"OK {result.digest}")


@cli.command()
@click.pass_context
def order(ctx):
    """Print the service startup order"""
    settings = _settings(ctx, check_secrets=False, check_env_files=False)
    try:
        result = PlanOrchestrator(settings).build()
    except StackPlanError as e:
        _report(ctx, e)
        return
    for name in result.startup_order:
        click.echo(name)


@cli.command()
@click.argument('service')
@click.pass_context
def env(ctx, service):
    """Print the merged environment of a service"""
    orchestrator = PlanOrchestrator(_settings(ctx))
    try:
        manifest = orchestrator.merge()
        if service not in manifest.services:
            raise SchemaError(f"no such service '{service}'", service=service)
        environment = orchestrator.environment.get_merged_environment(manifest.services[service])
    except StackPlanError as e:
        _report(ctx, e)
        return
    for key in sorted(environment):
        value = environment[key]
        click.echo(key if value is None else f"{key}={value}")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={}, prog_name="stackplan")


if __name__ == '__main__':
    main()
