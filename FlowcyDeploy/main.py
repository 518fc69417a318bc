#!/usr/bin/env python3
"""
Flowcy Deployment Command Line

Responsibility:
- Print the documented parameter table
- Render the ARM template (and an optional parameters file)
- Validate parameter values before anything is deployed
- Preview the resolved plan and the cloud CLI command
- Serve the HTTP surface

Examples:
    python3 main.py parameters
    python3 main.py render --output azuredeploy.json
    python3 main.py validate azureDevOpsOrgName=contoso webPat=... daemonPat=...
    python3 main.py plan -p params.json --format yaml
    python3 main.py command -p params.json --resource-group flowcy-rg
"""

import argparse
import json
import logging
import sys

import uvicorn

from deployment_engine import DeploymentEngine
from exceptions import FlowcyDeployError
from log_setup import setup_logging
from settings import API_CONFIG, DEPLOY_CONFIG, get_api_port, load_parameter_file, parse_parameter_pairs
from yaml_renderer import plan_to_dict

logger = logging.getLogger(__name__)


def print_header(title: str):
    print()
    print("=" * 80)
    print(title)
    print("=" * 80)
    print()


def collect_values(args) -> dict:
    """Parameter file values, overridden by name=value pairs."""
    values = {}
    if getattr(args, "parameters_file", None):
        values.update(load_parameter_file(args.parameters_file))
    values.update(parse_parameter_pairs(getattr(args, "values", None)))
    return values


def make_engine(args) -> DeploymentEngine:
    return DeploymentEngine(
        resource_group=getattr(args, "resource_group", None),
        resource_group_location=getattr(args, "location", None)
    )


def print_failures(failures):
    for failure in failures:
        print(f"  ✗ {failure.subject} [{failure.path}]: {failure.reason}")
        if failure.options:
            print(f"      options: {', '.join(str(o) for o in failure.options)}")


def cmd_parameters(args) -> int:
    engine = make_engine(args)
    print_header("FLOWCY DEPLOYMENT PARAMETERS")
    print(f"{'name':<24} {'type':<13} {'default':<30} constraint")
    print("-" * 80)

    for param in engine.descriptor.parameters.values():
        default = "(required)" if param.required else str(param.default)
        constraints = []
        if param.min_length is not None or param.max_length is not None:
            constraints.append(f"length {param.min_length or 0}-{param.max_length or '∞'}")
        if param.min_value is not None or param.max_value is not None:
            constraints.append(f"value {param.min_value}-{param.max_value}")
        if param.allowed_values:
            constraints.append(f"one of {', '.join(param.allowed_values)}")
        if param.pattern:
            constraints.append(f"matches {param.pattern}")
        print(f"{param.name:<24} {param.type:<13} {default:<30} {'; '.join(constraints)}")

    return 0


def cmd_render(args) -> int:
    engine = make_engine(args)
    template = json.dumps(engine.render_template(), indent=2) + "\n"

    # Validate before anything is written
    document = None
    if args.parameters_out:
        document = engine.render_parameters_file(collect_values(args))

    if args.output:
        with open(args.output, "w") as f:
            f.write(template)
        logger.info("Wrote template to %s", args.output)
    else:
        print(template, end="")

    if document is not None:
        with open(args.parameters_out, "w") as f:
            json.dump(document, f, indent=2)
            f.write("\n")
        logger.info("Wrote parameters file to %s (secure values omitted)", args.parameters_out)

    return 0


def cmd_validate(args) -> int:
    engine = make_engine(args)
    _, failures = engine.check_parameters(collect_values(args))
    if not failures:
        failures = engine.check_descriptor()

    if failures:
        print(f"✗ Deployment rejected ({len(failures)} problem(s)):")
        print_failures(failures)
        return 1

    print("✓ Parameters and descriptor are valid")
    return 0


def cmd_plan(args) -> int:
    engine = make_engine(args)
    values = collect_values(args)

    if args.format == "json":
        print(json.dumps(plan_to_dict(engine.prepare(values)), indent=2))
    else:
        print(engine.render_plan(values), end="")

    return 0


def cmd_command(args) -> int:
    engine = make_engine(args)
    values = collect_values(args)

    # Refuse to print a command the engine would reject
    _, failures = engine.check_parameters(values)
    if failures:
        print(f"✗ Deployment rejected ({len(failures)} problem(s)):")
        print_failures(failures)
        return 1

    print(engine.format_cli_command(values, template_file=args.template_file))
    return 0


def cmd_serve(args) -> int:
    uvicorn.run(
        "api_server:app",
        host=args.host or API_CONFIG["host"],
        port=args.port or get_api_port(),
        log_level=DEPLOY_CONFIG["log_level"].lower()
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flowcy-deploy",
        description="Render, validate and preview the Flowcy Azure deployment."
    )
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_target_options(sub):
        sub.add_argument("--resource-group", default=None, help="Target resource group")
        sub.add_argument("--location", default=None, help="Resource group location")

    def add_value_options(sub):
        sub.add_argument("-p", "--parameters-file", default=None,
                         help="ARM parameters file or plain JSON/YAML mapping")
        sub.add_argument("values", nargs="*", metavar="name=value", help="Parameter values")

    sub = subparsers.add_parser("parameters", help="Print the parameter table")
    sub.set_defaults(handler=cmd_parameters)

    sub = subparsers.add_parser("render", help="Render the ARM template")
    sub.add_argument("-o", "--output", default=None, help="Write the template to a file")
    sub.add_argument("--parameters-out", default=None, help="Also write an ARM parameters file")
    add_value_options(sub)
    sub.set_defaults(handler=cmd_render)

    sub = subparsers.add_parser("validate", help="Validate parameter values")
    add_target_options(sub)
    add_value_options(sub)
    sub.set_defaults(handler=cmd_validate)

    sub = subparsers.add_parser("plan", help="Preview the resolved deployment plan")
    sub.add_argument("--format", choices=["yaml", "json"], default="yaml")
    add_target_options(sub)
    add_value_options(sub)
    sub.set_defaults(handler=cmd_plan)

    sub = subparsers.add_parser("command", help="Print the az CLI command (secrets masked)")
    sub.add_argument("--template-file", default=None)
    add_target_options(sub)
    add_value_options(sub)
    sub.set_defaults(handler=cmd_command)

    sub = subparsers.add_parser("serve", help="Serve the HTTP API")
    sub.add_argument("--host", default=None)
    sub.add_argument("--port", type=int, default=None)
    sub.set_defaults(handler=cmd_serve)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    try:
        return args.handler(args)
    except FlowcyDeployError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
