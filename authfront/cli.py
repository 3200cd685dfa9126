"""Command-line entry point: ``deploy``, ``certificate`` and ``validate``."""
from __future__ import annotations

import argparse
import os
import shutil
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from authfront.aws_cli import AwsCli
from authfront.certificates import (
  chain_is_parseable,
  generate_self_signed,
  import_existing,
  load_certificate_handle,
  register_certificate,
  summarize,
  write_bundle,
)
from authfront.config import (
  DeploymentContext,
  ProjectLayout,
  load_environment_defaults,
  resolve,
  select_environment,
)
from authfront.console import ColorMode, Console, build_console_palette
from authfront.errors import AuthFrontError, DeploymentError, PreconditionError, UsageError
from authfront.models import FindingStatus
from authfront.orchestrator import StackOrchestrator
from authfront.parameters import ParameterSet, parse_override
from authfront.validator import Validator


CONTEXT_FLAGS = ("project", "environment", "region", "stack_prefix", "use_private_certificate")


class _ArgumentParser(argparse.ArgumentParser):
  def error(self, message: str) -> None:  # type: ignore[override]
    raise UsageError(message)


def _add_context_arguments(parser: argparse.ArgumentParser) -> None:
  parser.add_argument("-p", "--project", help="Project name (default: from environments file).")
  parser.add_argument("-e", "--env", "--environment", dest="environment", help="Environment name (default: dev).")
  parser.add_argument("-r", "--region", help="AWS region (default: us-east-1).")


def build_parser() -> argparse.ArgumentParser:
  parser = _ArgumentParser(prog="authfront", description="Cognito + ALB authentication front-end deployment")
  parser.add_argument(
    "--root",
    default=".",
    help="Repository root holding templates and parameter files (default: current directory).",
  )
  parser.add_argument(
    "--config",
    default=None,
    help="Environments file (default: <root>/environments.yaml).",
  )
  parser.add_argument(
    "--aws-cli",
    default=os.environ.get("AUTHFRONT_AWS_CLI", "aws"),
    help="AWS CLI executable name (default: aws).",
  )
  parser.add_argument(
    "--color",
    choices=[mode.value for mode in ColorMode],
    default=ColorMode.AUTO.value,
    help="Color output mode: auto (default), always, or never.",
  )
  parser.add_argument(
    "--echo",
    action="store_true",
    help="Echo each AWS CLI command before execution.",
  )
  commands = parser.add_subparsers(dest="command", parser_class=_ArgumentParser)
  commands.required = True

  deploy = commands.add_parser("deploy", help="Deploy the Cognito and ALB stacks in order.")
  _add_context_arguments(deploy)
  deploy.add_argument("--stack-prefix", help="Stack name prefix (default: <project>-<environment>).")
  deploy.add_argument(
    "--use-private-certificate",
    "--use-private-cert",
    action="store_true",
    default=None,
    help="Use the certificate registered by 'authfront certificate' instead of ACM.",
  )
  deploy.add_argument(
    "--parameter",
    action="append",
    default=[],
    metavar="KEY=VALUE",
    help="Explicit stack parameter override, applied last to both stacks (repeatable).",
  )
  deploy.add_argument(
    "--wait-timeout",
    type=float,
    default=None,
    help="Seconds to wait for each stack to reach a terminal status.",
  )

  certificate = commands.add_parser("certificate", help="Generate or import a private certificate and register it.")
  _add_context_arguments(certificate)
  certificate.add_argument("-d", "--domain", help="Domain name for the certificate.")
  certificate.add_argument("-o", "--output-directory", "--output", dest="output_directory",
                           help="Directory for certificate files (default: certificates).")
  mode = certificate.add_mutually_exclusive_group(required=True)
  mode.add_argument("--generate-self-signed", dest="mode", action="store_const", const="generate",
                    help="Generate a new self-signed certificate.")
  mode.add_argument("--import-existing", dest="mode", action="store_const", const="import",
                    help="Import existing certificate files from the output directory.")

  validate = commands.add_parser("validate", help="Validate configuration files and deployed stacks.")
  _add_context_arguments(validate)
  validate.add_argument("--report-directory", help="Directory for the validation report (default: root).")
  validate.add_argument("--json", action="store_true", help="Also print the findings as JSON.")
  return parser


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
  return build_parser().parse_args(argv)


def load_context(args: argparse.Namespace) -> Tuple[DeploymentContext, ProjectLayout, Dict[str, Any]]:
  root = Path(args.root).resolve()
  flags = {name: getattr(args, name) for name in CONTEXT_FLAGS if getattr(args, name, None) is not None}
  environment = select_environment(flags)
  flags["environment"] = environment
  config_path = Path(args.config) if args.config else root / "environments.yaml"
  if args.config and not config_path.is_file():
    raise PreconditionError(f"Configuration file not found: {config_path}")
  defaults = load_environment_defaults(config_path, environment)
  context = resolve(flags, defaults)
  return context, ProjectLayout.from_defaults(root, defaults), defaults


def build_aws(args: argparse.Namespace, region: str, *, required: bool = True) -> AwsCli:
  executable = shutil.which(args.aws_cli)
  if executable is None:
    if required:
      raise PreconditionError(
        f"AWS CLI executable '{args.aws_cli}' was not found on PATH. "
        "Install the AWS CLI or supply --aws-cli with the full path to the executable."
      )
    executable = args.aws_cli
  return AwsCli(region, executable=executable, echo=args.echo)


def command_deploy(args: argparse.Namespace, console: Console) -> int:
  context, layout, defaults = load_context(args)
  overrides = ParameterSet(defaults.get("stack_parameters") or {})
  for raw in args.parameter:
    try:
      overrides.merge(parse_override(raw))
    except AuthFrontError as exc:
      raise UsageError(str(exc)) from exc

  console.log("Starting authentication front-end deployment...")
  console.info(f"Project: {context.project_name}  Environment: {context.environment}  Region: {context.region}")

  certificate = None
  if context.uses_private_certificate:
    console.log("Checking private certificate configuration...")
    certificate = load_certificate_handle(layout.certificate_parameter_file(context.environment))
    console.log("Private certificate configuration validated ✓")

  wait_timeout = args.wait_timeout if args.wait_timeout is not None else float(defaults.get("wait_timeout", 600))
  orchestrator = StackOrchestrator(
    context,
    build_aws(args, context.region),
    layout,
    overrides=overrides,
    wait_timeout=wait_timeout,
    console=console,
  )
  outcome = orchestrator.run(certificate)

  console.log("Deployment completed successfully! 🎉")
  console.plain()
  console.heading("=== Deployment Information ===")
  console.plain(f"Cognito User Pool ID: {outcome.outputs.get('UserPoolId', '(missing)')}")
  console.plain(f"Cognito Domain: {outcome.outputs.get('UserPoolDomain', '(missing)')}")
  console.plain(f"ALB DNS Name: {outcome.outputs.get('LoadBalancerDNSName', '(missing)')}")
  for finding in outcome.findings:
    if finding.status is FindingStatus.FAIL:
      console.warn(f"{finding.check}: {finding.detail}")
  return 0


def command_certificate(args: argparse.Namespace, console: Console) -> int:
  context, layout, _ = load_context(args)
  output_directory = Path(args.output_directory) if args.output_directory else layout.certificates_directory
  console.log("Starting private certificate management...")

  if args.mode == "generate":
    if not args.domain:
      raise UsageError("--domain is required with --generate-self-signed")
    console.log(f"Generating self-signed certificate for domain: {args.domain}")
    bundle = generate_self_signed(args.domain, context.project_name, context.environment)
    paths = write_bundle(bundle, output_directory)
    console.log("Self-signed certificate generated successfully!")
    for label, path in paths.items():
      console.info(f"  - {label}: {path}")
  else:
    console.log(f"Importing existing certificate files from {output_directory}...")
    bundle = import_existing(output_directory)
    if not bundle.has_chain:
      console.warn("Certificate chain file not found or empty; importing without a chain.")
    elif not chain_is_parseable(bundle.chain_pem):
      console.warn("Certificate chain file could not be parsed; ACM may reject it.")
    console.log("Certificate files imported and validated successfully!")

  console.log("Importing certificate to AWS Certificate Manager...")
  aws = build_aws(args, context.region)
  handle = register_certificate(bundle, aws, context, layout, output_directory)
  console.log("Certificate imported successfully to ACM")
  console.info(f"Certificate ARN: {handle.arn}")
  console.log(f"Parameter file created: {layout.certificate_parameter_file(context.environment)}")

  summary = summarize(bundle)
  console.plain()
  console.heading("=== Certificate Details ===")
  console.plain(f"Subject: {summary.subject}")
  console.plain(f"Issuer: {summary.issuer}")
  console.plain(f"Not Before: {summary.not_before.isoformat()}")
  console.plain(f"Not After: {summary.not_after.isoformat()}")
  console.plain(f"DNS: {', '.join(summary.dns_names) or '(none)'}")
  status = aws.describe_certificate(handle.arn).get("Status")
  if status:
    console.plain(f"ACM status: {status}")
  if summary.self_signed:
    console.warn("This is a self-signed certificate. Browsers will show security warnings.")
  console.plain()
  console.plain(f"Next: authfront deploy -e {context.environment} --use-private-certificate")
  return 0


def command_validate(args: argparse.Namespace, console: Console) -> int:
  context, layout, _ = load_context(args)
  report_directory = Path(args.report_directory) if args.report_directory else None
  validator = Validator(
    context,
    build_aws(args, context.region, required=False),
    layout,
    report_directory=report_directory,
    console=console,
  )
  console.log("Starting configuration validation...")
  report = validator.run()
  if args.json:
    console.plain(validator.summary_json())
  if report.passed:
    warnings = len(report.by_status(FindingStatus.WARN))
    console.log(f"All validation checks passed ({warnings} warning(s)) ✅")
    return 0
  console.error("validation", "Some validation checks failed. Please review the issues above.")
  return 1


COMMANDS = {
  "deploy": command_deploy,
  "certificate": command_certificate,
  "validate": command_validate,
}


def main(argv: Optional[List[str]] = None) -> int:
  console = Console()
  try:
    args = parse_arguments(argv)
    console = Console(build_console_palette(args.color))
    return COMMANDS[args.command](args, console)
  except DeploymentError as exc:
    hint = "safe to re-run" if exc.retryable else "not retryable; correct the input first"
    console.error(exc.category, f"{exc} ({hint})")
    return exc.exit_code
  except AuthFrontError as exc:
    console.error(exc.category, str(exc))
    return exc.exit_code
  except Exception as exc:  # pylint: disable=broad-except
    console.error("unhandled", f"Unhandled error: {exc}")
    return 1


if __name__ == "__main__":
  sys.exit(main())
