"""Post-hoc validation of static artifacts and live stack state.

Checks never raise: every problem becomes a finding so a single failure does
not hide the rest. A stack that has not been deployed yet is a warning.
"""
from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from authfront.config import DeploymentContext, ProjectLayout
from authfront.console import Console
from authfront.errors import AuthFrontError
from authfront.models import FindingStatus, StackDescription, ValidationReport
from authfront.parameters import read_parameter_file


class Validator:
  def __init__(
    self,
    context: DeploymentContext,
    aws,
    layout: ProjectLayout,
    *,
    report_directory: Optional[Path] = None,
    console: Optional[Console] = None,
    clock: Callable[[], datetime] = datetime.now,
  ) -> None:
    self.context = context
    self.aws = aws
    self.layout = layout
    self.report_directory = report_directory or layout.root
    self.console = console or Console()
    self.clock = clock
    self.report = ValidationReport()
    self._stacks: dict = {}
    self._describe_errors: Dict[str, str] = {}

  def _record(self, check: str, status: FindingStatus, detail: str = "") -> None:
    self.report.add(check, status, detail)
    line = f"{check}: {detail}" if detail else check
    if status is FindingStatus.PASS:
      self.console.success(line)
    elif status is FindingStatus.WARN:
      self.console.warn(line)
    else:
      self.console.fail(line)

  def _relative(self, path: Path) -> str:
    try:
      return str(path.relative_to(self.layout.root))
    except ValueError:
      return str(path)

  # -- static artifacts -------------------------------------------------

  def check_credentials(self) -> None:
    self.console.info("Checking AWS configuration...")
    try:
      identity = self.aws.caller_identity()
    except AuthFrontError as exc:
      self._record("credentials", FindingStatus.FAIL, str(exc))
      return
    self._record("credentials", FindingStatus.PASS, f"account {identity.get('Account', 'unknown')}")

  def check_templates(self) -> None:
    self.console.info("Validating CloudFormation templates...")
    for template in self.layout.templates:
      check = f"template {self._relative(template)}"
      if not template.is_file():
        self._record(check, FindingStatus.FAIL, "not found")
        continue
      try:
        valid, reason = self.aws.validate_template(template)
      except AuthFrontError as exc:
        valid, reason = False, str(exc)
      if valid:
        self._record(check, FindingStatus.PASS, "valid")
      else:
        self._record(check, FindingStatus.FAIL, f"invalid: {reason}")

  def parameter_files(self) -> List[Path]:
    environments = list(self.layout.validated_environments)
    if self.context.environment not in environments:
      environments.append(self.context.environment)
    files = [self.layout.environment_parameter_file(name) for name in environments]
    certificate_file = self.layout.certificate_parameter_file(self.context.environment)
    if certificate_file.is_file():
      files.append(certificate_file)
    return files

  def check_parameter_files(self) -> None:
    self.console.info("Checking parameter files...")
    for parameter_file in self.parameter_files():
      check = f"parameters {self._relative(parameter_file)}"
      if not parameter_file.is_file():
        self._record(check, FindingStatus.FAIL, "not found")
        continue
      try:
        read_parameter_file(parameter_file)
      except (AuthFrontError, OSError) as exc:
        self._record(check, FindingStatus.FAIL, str(exc))
        continue
      self._record(check, FindingStatus.PASS, "valid JSON")

  def check_required_files(self) -> None:
    self.console.info("Checking environment configuration files...")
    for required in self.layout.required_files:
      check = f"config {self._relative(required)}"
      if required.is_file():
        self._record(check, FindingStatus.PASS, "found")
      else:
        self._record(check, FindingStatus.WARN, "not found")

  # -- live state -------------------------------------------------------

  def _describe(self, stack_name: str) -> Optional[StackDescription]:
    if stack_name not in self._stacks:
      self._stacks[stack_name] = self.aws.describe_stack(stack_name)
    return self._stacks[stack_name]

  def check_stacks(self) -> None:
    self.console.info("Checking CloudFormation stacks...")
    for stack_name in (self.context.directory_stack_name, self.context.routing_stack_name):
      check = f"stack {stack_name}"
      try:
        description = self._describe(stack_name)
      except AuthFrontError as exc:
        self._describe_errors[stack_name] = str(exc)
        self._record(check, FindingStatus.FAIL, str(exc))
        continue
      if description is None:
        self._record(check, FindingStatus.WARN, "not found (not deployed yet)")
      elif description.healthy:
        self._record(check, FindingStatus.PASS, description.status)
      else:
        self._record(check, FindingStatus.FAIL, f"bad state {description.status}")

  def check_user_pool(self) -> None:
    self.console.info("Testing Cognito configuration...")
    check = "resource user pool"
    if self.context.directory_stack_name in self._describe_errors:
      self._record(check, FindingStatus.FAIL, "Cognito stack could not be described")
      return
    description = self._stacks.get(self.context.directory_stack_name)
    if description is None:
      self._record(check, FindingStatus.WARN, "Cognito stack not deployed yet")
      return
    user_pool_id = description.outputs.get("UserPoolId")
    if not user_pool_id:
      self._record(check, FindingStatus.FAIL, "cannot retrieve UserPoolId from stack outputs")
      return
    try:
      pool = self.aws.describe_user_pool(user_pool_id)
    except AuthFrontError as exc:
      pool = {}
      self.console.warn(str(exc))
    if pool:
      self._record(check, FindingStatus.PASS, f"{user_pool_id} accessible")
    else:
      self._record(check, FindingStatus.FAIL, f"cannot access user pool {user_pool_id}")

  def check_load_balancer(self) -> None:
    self.console.info("Testing ALB configuration...")
    check = "resource load balancer"
    if self.context.routing_stack_name in self._describe_errors:
      self._record(check, FindingStatus.FAIL, "ALB stack could not be described")
      return
    description = self._stacks.get(self.context.routing_stack_name)
    if description is None:
      self._record(check, FindingStatus.WARN, "ALB stack not deployed yet")
      return
    balancer_arn = description.outputs.get("LoadBalancerArn")
    if not balancer_arn:
      self._record(check, FindingStatus.FAIL, "cannot retrieve LoadBalancerArn from stack outputs")
      return
    try:
      balancer = self.aws.describe_load_balancer(balancer_arn)
    except AuthFrontError as exc:
      balancer = {}
      self.console.warn(str(exc))
    if balancer:
      self._record(check, FindingStatus.PASS, f"DNS name {balancer.get('DNSName', 'unknown')}")
    else:
      self._record(check, FindingStatus.FAIL, f"cannot access load balancer {balancer_arn}")

  # -- report -----------------------------------------------------------

  def render_report(self, generated: datetime) -> str:
    lines = [
      "ElasticBeanstalk Authentication Validation Report",
      f"Generated: {generated.isoformat(timespec='seconds')}",
      f"Project: {self.context.project_name}",
      f"Environment: {self.context.environment}",
      f"Region: {self.context.region}",
      "",
      "=== Findings ===",
    ]
    for finding in self.report.findings:
      detail = f" - {finding.detail}" if finding.detail else ""
      lines.append(f"[{finding.status.value}] {finding.check}{detail}")
    lines.extend(["", "=== AWS Resources ==="])
    for stack_name in (self.context.directory_stack_name, self.context.routing_stack_name):
      description = self._stacks.get(stack_name)
      if stack_name in self._describe_errors:
        state = "ERROR"
      else:
        state = description.status if description else "NOT_FOUND"
      lines.append(f"{stack_name}: {state}")
    verdict = "PASS" if self.report.passed else "FAIL"
    warnings = len(self.report.by_status(FindingStatus.WARN))
    lines.extend(["", f"Verdict: {verdict} ({warnings} warning(s))", ""])
    return "\n".join(lines)

  def write_report(self) -> Path:
    generated = self.clock()
    self.report_directory.mkdir(parents=True, exist_ok=True)
    path = self.report_directory / f"validation-report-{generated.strftime('%Y%m%d-%H%M%S')}.txt"
    path.write_text(self.render_report(generated), encoding="utf-8")
    self.report.report_path = str(path)
    return path

  def run(self) -> ValidationReport:
    self.check_credentials()
    self.check_templates()
    self.check_parameter_files()
    self.check_required_files()
    self.check_stacks()
    self.check_user_pool()
    self.check_load_balancer()
    path = self.write_report()
    self.console.log(f"Validation report generated: {path}")
    return self.report

  def summary(self) -> dict:
    return {
      "verdict": "PASS" if self.report.passed else "FAIL",
      "findings": [
        {"check": finding.check, "status": finding.status.value, "detail": finding.detail}
        for finding in self.report.findings
      ],
    }

  def summary_json(self) -> str:
    return json.dumps(self.summary(), indent=2)
