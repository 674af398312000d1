import sys
import json
import asyncio
import argparse

import uvicorn
from pydantic import ValidationError

from deployer.core.logging import configure_logging
from deployer.core.settings import load_settings
from deployer.deploy.errors import DeployError
from deployer.deploy.manager import DeploymentManager, set_manager
from deployer.deploy.models import DeploymentCreate


def _print_json(data):
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def cmd_add(mgr: DeploymentManager, args):
    req = DeploymentCreate(
        service_name=args.service_name,
        source_repo=args.repo,
        branch=args.branch,
        port=args.port,
        build_command=args.build_command,
        start_command=args.start_command,
        auto_deploy=not args.no_auto_deploy,
        process_manager=args.process_manager,
    )
    cfg = mgr.add_deployment(req)
    print(f"Deployment configuration created for {cfg.service_name}")
    _print_webhook_info(mgr, cfg.service_name)


def cmd_list(mgr: DeploymentManager, args):
    views = mgr.list_deployments()
    if not views:
        print("No deployments configured")
        return
    print(f"{'SERVICE':<24} {'STATUS':<12} {'RUNNING':<8} {'PORT':<6} {'MANAGER':<8} LAST DEPLOYMENT")
    for name, v in views.items():
        print(f"{name:<24} {v.status:<12} {'yes' if v.system_running else 'no':<8} "
              f"{v.config.get('port', ''):<6} {v.config.get('process_manager', ''):<8} {v.last_deployment or '-'}")


def cmd_status(mgr: DeploymentManager, args):
    _print_json(mgr.get_deployment(args.service_name).model_dump())


def cmd_deploy(mgr: DeploymentManager, args):
    rec = mgr.deploy(args.service_name, force=args.force)
    print(f"{args.service_name}: {rec.status} - {rec.message}")
    if rec.status != "running":
        return 1


def cmd_remove(mgr: DeploymentManager, args):
    mgr.remove_deployment(args.service_name)
    print(f"Deployment {args.service_name} removed")


def _print_webhook_info(mgr: DeploymentManager, service_name: str):
    info = mgr.webhook_info(service_name)
    print()
    print(f"GitHub webhook setup for {service_name}:")
    print(f"  Payload URL:  {info['payload_url']}")
    print(f"  Content type: {info['content_type']}")
    print(f"  Secret:       {info['secret']}")
    print("  Events:       Just the push event")
    print(f"  Pushes to '{info['branch']}' trigger a deployment")


def cmd_webhook_info(mgr: DeploymentManager, args):
    _print_webhook_info(mgr, args.service_name)


async def _serve(mgr: DeploymentManager, args):
    from deployer.main import create_app, create_webhook_app

    servers = [uvicorn.Server(uvicorn.Config(create_app(), host=args.host, port=args.port, log_level="info"))]
    if args.webhook_port:
        servers.append(uvicorn.Server(uvicorn.Config(create_webhook_app(), host=args.host,
                                                     port=args.webhook_port, log_level="info")))
    tasks = [asyncio.create_task(s.serve()) for s in servers]
    print(f"Dashboard API on port {args.port}" +
          (f", webhook server on port {args.webhook_port}" if args.webhook_port else ""))
    await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    for s in servers:
        s.should_exit = True
    await asyncio.gather(*tasks, return_exceptions=True)


def cmd_serve(mgr: DeploymentManager, args):
    asyncio.run(_serve(mgr, args))


def build_parser(settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="api-gateway-deployer", description="API Gateway deployment manager")
    parser.add_argument("--config", help="Path to deployer settings JSON")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("serve", help="Run the dashboard API and webhook server")
    p.add_argument("--host", default="0.0.0.0")
    p.add_argument("--port", type=int, default=settings.dashboard_port, help="Dashboard API port")
    p.add_argument("--webhook-port", type=int, default=settings.webhook_port,
                   help="Dedicated webhook port (0 to serve webhooks on the dashboard port only)")
    p.set_defaults(func=cmd_serve)

    p = sub.add_parser("add", help="Configure a new deployment")
    p.add_argument("service_name")
    p.add_argument("repo", help="https://github.com/owner/repo, git@github.com:owner/repo.git or owner/repo")
    p.add_argument("port", type=int)
    p.add_argument("--branch")
    p.add_argument("--build-command")
    p.add_argument("--start-command")
    p.add_argument("--process-manager", choices=["systemd", "pm2"])
    p.add_argument("--no-auto-deploy", action="store_true")
    p.set_defaults(func=cmd_add)

    p = sub.add_parser("list", help="List deployments")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("status", help="Show one deployment")
    p.add_argument("service_name")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("deploy", help="Deploy now and wait for the result")
    p.add_argument("service_name")
    p.add_argument("--force", action="store_true", help="Discard the working copy and clone fresh")
    p.set_defaults(func=cmd_deploy)

    p = sub.add_parser("remove", help="Remove a deployment")
    p.add_argument("service_name")
    p.set_defaults(func=cmd_remove)

    p = sub.add_parser("webhook-info", help="Show GitHub webhook setup")
    p.add_argument("service_name")
    p.set_defaults(func=cmd_webhook_info)
    return parser


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config")
    known, _ = pre.parse_known_args(argv)
    settings = load_settings(known.config)

    args = build_parser(settings).parse_args(argv)
    configure_logging(settings.log_dir)
    mgr = DeploymentManager(settings)
    set_manager(mgr)
    try:
        return args.func(mgr, args) or 0
    except DeployError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
