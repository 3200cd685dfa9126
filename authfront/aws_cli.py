"""Thin wrapper around the ``aws`` command-line executable.

Every external call the deployment needs (CloudFormation, ACM, EC2, Cognito,
ELBv2, STS) goes through :class:`AwsCli`. Calls are synchronous and never
overlap.
"""
from __future__ import annotations

import json
import subprocess
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from authfront.errors import DeploymentError, PreconditionError
from authfront.models import (
  StackDeploymentResult,
  StackDescription,
  TerminalStatus,
  is_terminal_status,
)
from authfront.parameters import ParameterSet


Runner = Callable[..., subprocess.CompletedProcess]

NO_CHANGES_MARKERS = ("No changes to deploy", "didn't contain changes")
# The service refused the request itself; re-running unchanged input fails the same way.
MALFORMED_INPUT_MARKERS = (
  "An error occurred (ValidationError)",
  "Template format error",
  "Parameter validation failed",
)


def format_command(command: Iterable[str]) -> str:
  return " ".join(json.dumps(arg) for arg in command)


def _last_line(text: str) -> str:
  lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
  return lines[-1] if lines else ""


def is_malformed_input(text: str) -> bool:
  return any(marker in (text or "") for marker in MALFORMED_INPUT_MARKERS)


def _stack_missing(completed: subprocess.CompletedProcess) -> bool:
  return completed.returncode != 0 and "does not exist" in (completed.stderr or "")


class AwsCli:
  def __init__(
    self,
    region: str,
    *,
    executable: str = "aws",
    runner: Optional[Runner] = None,
    echo: bool = False,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
  ) -> None:
    self.region = region
    self.executable = executable
    self._runner = runner or subprocess.run
    self._echo = echo
    self._sleep = sleep
    self._clock = clock

  def build_command(self, *args: str, output: Optional[str] = "json") -> List[str]:
    command = [self.executable, *args, "--region", self.region]
    if output:
      command.extend(["--output", output])
    return command

  def run(self, *args: str, output: Optional[str] = "json") -> subprocess.CompletedProcess:
    command = self.build_command(*args, output=output)
    if self._echo:
      print(format_command(command))
    try:
      return self._runner(command, check=False, capture_output=True, text=True)
    except FileNotFoundError as exc:
      raise PreconditionError(
        f"Command '{command[0]}' could not be executed ({exc.strerror or 'file not found'}). "
        "Ensure the AWS CLI is installed and available on PATH."
      ) from exc

  def run_json(self, *args: str) -> Tuple[subprocess.CompletedProcess, Dict[str, Any]]:
    completed = self.run(*args)
    if completed.returncode != 0:
      return completed, {}
    try:
      payload = json.loads(completed.stdout or "{}")
    except json.JSONDecodeError:
      return completed, {}
    return completed, payload if isinstance(payload, dict) else {}

  # -- identity ---------------------------------------------------------

  def caller_identity(self) -> Dict[str, Any]:
    completed, payload = self.run_json("sts", "get-caller-identity")
    if completed.returncode != 0 or not payload:
      raise PreconditionError(
        "AWS credentials not configured or invalid: "
        + (_last_line(completed.stderr) or "sts get-caller-identity failed")
      )
    return payload

  # -- provisioning -----------------------------------------------------

  def validate_template(self, template: Path) -> Tuple[bool, str]:
    completed = self.run(
      "cloudformation", "validate-template", "--template-body", f"file://{template}"
    )
    if completed.returncode != 0:
      return False, _last_line(completed.stderr) or f"exit code {completed.returncode}"
    return True, ""

  def deploy_stack(
    self,
    template: Path,
    stack_name: str,
    parameters: ParameterSet,
    capabilities: Iterable[str] = ("CAPABILITY_IAM",),
  ) -> StackDeploymentResult:
    args = [
      "cloudformation",
      "deploy",
      "--template-file",
      str(template),
      "--stack-name",
      stack_name,
    ]
    overrides = parameters.to_overrides()
    if overrides:
      args.append("--parameter-overrides")
      args.extend(overrides)
    capabilities = list(capabilities)
    if capabilities:
      args.append("--capabilities")
      args.extend(capabilities)
    args.append("--no-fail-on-empty-changeset")

    completed = self.run(*args, output=None)
    combined = f"{completed.stdout or ''}\n{completed.stderr or ''}"
    if completed.returncode != 0:
      return StackDeploymentResult(
        stack_name=stack_name,
        terminal_status=TerminalStatus.FAILED,
        message=_last_line(completed.stderr) or _last_line(completed.stdout),
        retryable=not is_malformed_input(combined),
      )
    if any(marker in combined for marker in NO_CHANGES_MARKERS):
      status = TerminalStatus.NO_CHANGES
    else:
      status = TerminalStatus.CREATED_OR_UPDATED
    return StackDeploymentResult(
      stack_name=stack_name,
      terminal_status=status,
      message=_last_line(completed.stdout),
    )

  def describe_stack(self, stack_name: str) -> Optional[StackDescription]:
    """Return the live stack or ``None`` when it does not exist."""
    completed, payload = self.run_json(
      "cloudformation", "describe-stacks", "--stack-name", stack_name
    )
    if _stack_missing(completed):
      return None
    if completed.returncode != 0:
      raise DeploymentError(
        f"Could not describe stack '{stack_name}': {_last_line(completed.stderr)}",
        stack_name=stack_name,
      )
    stacks = payload.get("Stacks") or []
    if not stacks:
      return None
    stack = stacks[0]
    outputs: Dict[str, str] = {}
    for row in stack.get("Outputs") or []:
      if isinstance(row, dict) and "OutputKey" in row:
        outputs[row["OutputKey"]] = row.get("OutputValue", "")
    return StackDescription(
      stack_name=stack_name,
      status=stack.get("StackStatus", "UNKNOWN"),
      outputs=outputs,
    )

  def wait_for_stack(
    self, stack_name: str, *, timeout: float = 600, interval: float = 5
  ) -> StackDescription:
    """Poll until the stack reports a terminal status or ``timeout`` seconds pass."""
    deadline = self._clock() + timeout
    while True:
      description = self.describe_stack(stack_name)
      if description is not None and is_terminal_status(description.status):
        return description
      if self._clock() >= deadline:
        observed = description.status if description else "NOT_FOUND"
        raise DeploymentError(
          f"Stack '{stack_name}' did not reach a terminal status within {timeout:g}s (last: {observed}).",
          stack_name=stack_name,
        )
      self._sleep(interval)

  # -- certificate store ------------------------------------------------

  def import_certificate(
    self, certificate_pem: bytes, private_key_pem: bytes, chain_pem: Optional[bytes] = None
  ) -> Tuple[Optional[str], str]:
    """Import PEM material into ACM. Returns ``(arn, error_message)``."""
    with tempfile.TemporaryDirectory(prefix="authfront-") as scratch:
      directory = Path(scratch)
      certificate_path = directory / "certificate.pem"
      key_path = directory / "private-key.pem"
      certificate_path.write_bytes(certificate_pem)
      key_path.write_bytes(private_key_pem)
      key_path.chmod(0o600)
      args = [
        "acm",
        "import-certificate",
        "--certificate",
        f"fileb://{certificate_path}",
        "--private-key",
        f"fileb://{key_path}",
      ]
      if chain_pem:
        chain_path = directory / "certificate-chain.pem"
        chain_path.write_bytes(chain_pem)
        args.extend(["--certificate-chain", f"fileb://{chain_path}"])
      completed, payload = self.run_json(*args)

    arn = payload.get("CertificateArn")
    if completed.returncode != 0 or not arn:
      return None, _last_line(completed.stderr) or "import-certificate returned no CertificateArn"
    return arn, ""

  def describe_certificate(self, arn: str) -> Dict[str, Any]:
    completed, payload = self.run_json("acm", "describe-certificate", "--certificate-arn", arn)
    if completed.returncode != 0:
      return {}
    return payload.get("Certificate") or {}

  # -- network topology -------------------------------------------------

  def default_vpc_id(self) -> Optional[str]:
    completed, payload = self.run_json(
      "ec2", "describe-vpcs", "--filters", "Name=is-default,Values=true"
    )
    if completed.returncode != 0:
      raise PreconditionError(f"Could not describe VPCs: {_last_line(completed.stderr)}")
    vpcs = payload.get("Vpcs") or []
    if not vpcs:
      return None
    return vpcs[0].get("VpcId") or None

  def list_subnets(self, vpc_id: str) -> List[str]:
    completed, payload = self.run_json(
      "ec2", "describe-subnets", "--filters", f"Name=vpc-id,Values={vpc_id}"
    )
    if completed.returncode != 0:
      raise PreconditionError(f"Could not describe subnets of {vpc_id}: {_last_line(completed.stderr)}")
    return [row["SubnetId"] for row in payload.get("Subnets") or [] if row.get("SubnetId")]

  # -- primary resources ------------------------------------------------

  def describe_user_pool(self, user_pool_id: str) -> Dict[str, Any]:
    completed, payload = self.run_json(
      "cognito-idp", "describe-user-pool", "--user-pool-id", user_pool_id
    )
    if completed.returncode != 0:
      return {}
    return payload.get("UserPool") or {}

  def describe_load_balancer(self, arn: str) -> Dict[str, Any]:
    completed, payload = self.run_json(
      "elbv2", "describe-load-balancers", "--load-balancer-arns", arn
    )
    if completed.returncode != 0:
      return {}
    balancers = payload.get("LoadBalancers") or []
    return balancers[0] if balancers else {}
