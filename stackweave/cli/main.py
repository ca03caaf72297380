"""Main CLI entrypoint for stackweave."""

import json
import logging
import sys
from typing import Any, Dict

import click

from .. import orchestrator
from ..config import EngineConfig
from ..errors import DefinitionError, SecurityViolation
from ..events import get_status_from_events, read_events, tail_events
from ..ids import deployment_started_at
from ..state import deployment_exists, list_deployments
from ..tags import parse_user_tags


@click.group()
@click.option('--json', 'output_json', is_flag=True, help='Output machine-readable JSON')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def main(ctx, output_json, verbose):
    """stackweave - provision the OData service stack as a resource graph."""
    ctx.ensure_object(dict)
    ctx.obj['json'] = output_json
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _json_output(data: Any) -> None:
    """Output data as JSON."""
    click.echo(json.dumps(data, indent=None, default=str))


def _human_output(message: str) -> None:
    """Output human-readable message."""
    if not click.get_current_context().obj.get('json', False):
        click.echo(message)


def _is_json() -> bool:
    return click.get_current_context().obj.get('json', False)


def _fail(message: str, code: int = 1, **extra) -> None:
    if _is_json():
        _json_output({'error': message, **extra})
    else:
        click.echo(f"❌ {message}", err=True)
    sys.exit(code)


@main.command()
@click.option('--environment', default='Production', show_default=True, help='Deploy environment')
@click.option('--region', default='us-east-1', show_default=True, help='AWS region')
@click.option('--account', default='000000000000', help='AWS account id')
@click.pass_context
def synth(ctx, environment, region, account):
    """Validate the stack, check its security posture and print the plan."""
    result = orchestrator.synth(environment=environment, region=region, account=account)

    if _is_json():
        _json_output(result)
    elif result['valid']:
        click.echo(f"✅ {result['resources']} resources in {len(result['plan'])} stages")
        for stage in result['plan']:
            ids = ", ".join(r['id'] for r in stage['resources'])
            click.echo(f"  stage {stage['stage']}: {ids}")
        for warning in result['warnings']:
            click.echo(f"⚠️  {warning['rule']} on {warning['resource_id']}: {warning['message']}")
    else:
        for violation in result.get('violations', []):
            click.echo(f"❌ {violation['rule']} on {violation['resource_id']}: {violation['message']}")
        for error in result.get('errors', []):
            click.echo(f"❌ {error}")

    sys.exit(0 if result['valid'] else 1)


@main.command('deploy')
@click.option('--db-password', envvar='STACKWEAVE_DB_PASSWORD', required=True,
              help='Database admin password (or STACKWEAVE_DB_PASSWORD)')
@click.option('--environment', default='Production', show_default=True, help='Deploy environment')
@click.option('--region', default='us-east-1', show_default=True, help='AWS region')
@click.option('--account', default='000000000000', help='AWS account id')
@click.option('--backend', type=click.Choice(['memory', 'aws']), default='memory', show_default=True,
              help='Provisioning backend')
@click.option('--deployment-id', help='Reconcile an existing deployment')
@click.option('--concurrency', type=int, help='Max concurrent provisioning calls per stage')
@click.option('--tag', 'tags', multiple=True, help='Extra tag key=value')
@click.pass_context
def deploy_cmd(ctx, db_password, environment, region, account, backend, deployment_id, concurrency, tags):
    """Deploy the stack, or reconcile an existing deployment."""
    try:
        user_tags = parse_user_tags(list(tags))
        config = EngineConfig.from_env(concurrency=concurrency)
    except ValueError as e:
        _fail(str(e), code=2)
        return

    _human_output(f"🚀 Deploying {environment} to {region} ({backend})")
    try:
        result = orchestrator.deploy(
            db_password=db_password,
            environment=environment,
            region=region,
            account=account,
            backend=backend,
            deployment_id=deployment_id,
            config=config,
            user_tags=user_tags,
        )
    except SecurityViolation as e:
        _fail("Security violations block apply", violations=[v.to_dict() for v in e.violations])
        return
    except DefinitionError as e:
        _fail(f"Invalid stack definition: {e}")
        return

    apply_result = result['result']
    if _is_json():
        _json_output({
            'deployment_id': result['deployment_id'],
            'status': result['status'],
            'warnings': result['warnings'],
            'failed_resource_id': apply_result['failed_resource_id'],
            'failed_resource_type': apply_result['failed_resource_type'],
            'cause': apply_result['cause'],
            'outputs': apply_result['outputs'],
        })
    elif result['status'] == 'deployed':
        click.echo(f"✅ Deployment {result['deployment_id']} is {click.style('deployed', fg='green')}")
        for name, value in apply_result['outputs'].items():
            click.echo(f"  {name} = {value}")
    elif result['status'] == 'failed':
        click.echo(f"❌ Deployment {result['deployment_id']} {click.style('failed', fg='red')}")
        click.echo(f"  Resource: {apply_result['failed_resource_id']} ({apply_result['failed_resource_type']})")
        click.echo(f"  Cause: {apply_result['cause']}")
        if apply_result['rolled_back']:
            click.echo(f"  Rolled back: {', '.join(apply_result['rolled_back'])}")
    else:
        click.echo(f"⏹️  Deployment {result['deployment_id']} cancelled")

    sys.exit(0 if result['status'] == 'deployed' else 1)


@main.command('destroy')
@click.argument('deployment_id')
@click.option('--yes', is_flag=True, help='Skip confirmation prompt')
@click.pass_context
def destroy_cmd(ctx, deployment_id, yes):
    """Destroy a deployment."""
    if not yes and not _is_json():
        if not click.confirm(f"Are you sure you want to destroy deployment {deployment_id}?"):
            _human_output("❌ Destruction cancelled")
            return

    _human_output(f"🗑️  Destroying deployment {deployment_id}...")
    result = orchestrator.destroy(deployment_id)

    if result['status'] == 'not_found':
        _fail(f"Deployment {deployment_id} not found", code=2)
    if _is_json():
        _json_output({'deployment_id': deployment_id, 'status': result['status']})
    elif result['status'] == 'destroyed':
        click.echo("✅ Deployment destroyed successfully")
    else:
        click.echo(f"❌ Destruction failed: {result['result']['cause']}")

    sys.exit(0 if result['status'] == 'destroyed' else 1)


@main.command()
@click.argument('deployment_id')
@click.pass_context
def status(ctx, deployment_id):
    """Get deployment status."""
    result = orchestrator.status(deployment_id)
    if result['status'] == 'not_found':
        _fail(f"Deployment {deployment_id} not found", code=2)

    if _is_json():
        _json_output(result)
        return
    _print_status_human(result)


@main.command()
@click.argument('deployment_id')
@click.pass_context
def outputs(ctx, deployment_id):
    """Show the outputs of a deployment."""
    values = orchestrator.outputs(deployment_id)
    if values is None:
        _fail(f"Deployment {deployment_id} not found or has no outputs", code=2)

    if _is_json():
        _json_output(values)
        return
    for name, value in sorted(values.items()):
        click.echo(f"{name} = {value}")


@main.command()
@click.argument('deployment_id')
@click.option('--follow', is_flag=True, help='Follow events in real-time')
@click.pass_context
def events(ctx, deployment_id, follow):
    """View deployment events."""
    if not deployment_exists(deployment_id):
        _fail(f"Deployment {deployment_id} not found", code=2)

    try:
        source = tail_events(deployment_id, follow=True) if follow else read_events(deployment_id)
        for event in source:
            if _is_json():
                _json_output(event)
            else:
                _print_event_human(event)
    except KeyboardInterrupt:
        _human_output("\n👋 Stopped following events")


@main.command('list')
@click.pass_context
def list_cmd(ctx):
    """List deployments, most recent first."""
    deployments = list_deployments()
    if _is_json():
        _json_output(deployments)
        return
    if not deployments:
        click.echo("No deployments yet")
    for deployment_id in deployments:
        started = deployment_started_at(deployment_id)
        click.echo(f"{deployment_id}  {started:%Y-%m-%d %H:%M:%S}  {get_status_from_events(deployment_id)}")


def _print_event_human(event: Dict[str, Any]) -> None:
    """Print event in human-readable format."""
    event_type = event.get('type', 'UNKNOWN')
    time_str = event.get('ts', '')[11:19]
    data = event.get('data', {})
    detail = data.get('resource_id') or data.get('reason') or ''

    if event_type in ('DONE', 'RESOURCE_CREATED', 'DESTROY_DONE'):
        color = 'green'
    elif event_type in ('ERROR', 'RESOURCE_FAILED', 'ROLLBACK'):
        color = 'red'
    elif event_type in ('RESOURCE_RETRY', 'SECURITY_WARNING', 'CANCELLED'):
        color = 'yellow'
    elif event_type.startswith('STAGE_'):
        color = 'blue'
    else:
        color = 'white'

    click.echo(f"[{time_str}] {click.style(event_type, fg=color)}: {detail}")


def _print_status_human(status_info: Dict[str, Any]) -> None:
    """Print status in human-readable format."""
    status = status_info.get('status', 'unknown')
    context = status_info.get('context', {})

    click.echo(f"📊 Deployment: {status_info['deployment_id']}")
    click.echo(f"Status: {click.style(status, fg='green' if status == 'deployed' else 'red')}")
    click.echo(f"Environment: {context.get('environment')}  Region: {context.get('region')}")
    for resource_status, count in sorted(status_info.get('resources', {}).items()):
        click.echo(f"  {resource_status}: {count}")
    for failed in status_info.get('failed', []):
        click.echo(f"❌ {failed['resource_id']} ({failed['type']}): {failed['error']}")


if __name__ == "__main__":
    main()
