"""Shared fixtures: an in-memory stand-in for the AWS CLI and a scratch project tree."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

from authfront.certificates import generate_self_signed
from authfront.config import ProjectLayout, resolve
from authfront.errors import DeploymentError, PreconditionError
from authfront.models import StackDeploymentResult, StackDescription, TerminalStatus


DIRECTORY_OUTPUTS = {"UserPoolId": "us-east-1_Pool", "UserPoolDomain": "eb-auth-demo-dev-123"}
ROUTING_OUTPUTS = {
  "LoadBalancerArn": "arn:aws:elasticloadbalancing:us-east-1:123:loadbalancer/app/x/1",
  "LoadBalancerDNSName": "x-1.us-east-1.elb.amazonaws.com",
}


class FakeAws:
  """Records every call; state lives in plain dictionaries."""

  def __init__(self) -> None:
    self.calls: List[Tuple[Any, ...]] = []
    self.identity: Optional[Dict[str, str]] = {"Account": "123456789012"}
    self.invalid_templates: set = set()
    self.failing_stacks: set = set()
    self.rejected_stacks: set = set()
    self.stacks: Dict[str, StackDescription] = {}
    self.applied: Dict[str, Dict[str, str]] = {}
    self.stack_outputs: Dict[str, Dict[str, str]] = {}
    self.vpc_id: Optional[str] = "vpc-0default"
    self.subnets: List[str] = ["subnet-a", "subnet-b", "subnet-c"]
    self.import_result: Tuple[Optional[str], str] = (
      "arn:aws:acm:us-east-1:123456789012:certificate/abc-123",
      "",
    )
    self.user_pools: Dict[str, Dict[str, str]] = {}
    self.load_balancers: Dict[str, Dict[str, str]] = {}

  def calls_named(self, name: str) -> List[Tuple[Any, ...]]:
    return [call for call in self.calls if call[0] == name]

  def deployed_stack_names(self) -> List[str]:
    return [call[1] for call in self.calls_named("deploy_stack")]

  def caller_identity(self) -> Dict[str, str]:
    self.calls.append(("caller_identity",))
    if self.identity is None:
      raise PreconditionError("AWS credentials not configured or invalid: no credentials")
    return self.identity

  def validate_template(self, template: Path) -> Tuple[bool, str]:
    self.calls.append(("validate_template", template.name))
    if template.name in self.invalid_templates:
      return False, "Template format error: unsupported structure."
    return True, ""

  def deploy_stack(self, template, stack_name, parameters, capabilities=("CAPABILITY_IAM",)):
    values = dict(parameters)
    self.calls.append(("deploy_stack", stack_name, values))
    if stack_name in self.failing_stacks:
      return StackDeploymentResult(stack_name, TerminalStatus.FAILED, message="Rate exceeded")
    if stack_name in self.rejected_stacks:
      return StackDeploymentResult(
        stack_name,
        TerminalStatus.FAILED,
        message="An error occurred (ValidationError): Parameters: [VpcId] must have values",
        retryable=False,
      )
    if self.applied.get(stack_name) == values:
      return StackDeploymentResult(stack_name, TerminalStatus.NO_CHANGES)
    status = "UPDATE_COMPLETE" if stack_name in self.stacks else "CREATE_COMPLETE"
    self.applied[stack_name] = values
    self.stacks[stack_name] = StackDescription(
      stack_name, status, dict(self.stack_outputs.get(stack_name, {}))
    )
    return StackDeploymentResult(stack_name, TerminalStatus.CREATED_OR_UPDATED)

  def describe_stack(self, stack_name: str) -> Optional[StackDescription]:
    self.calls.append(("describe_stack", stack_name))
    return self.stacks.get(stack_name)

  def wait_for_stack(self, stack_name: str, *, timeout: float = 600, interval: float = 5) -> StackDescription:
    self.calls.append(("wait_for_stack", stack_name))
    description = self.stacks.get(stack_name)
    if description is None:
      raise DeploymentError(f"Stack '{stack_name}' not found", stack_name=stack_name)
    return description

  def import_certificate(self, certificate_pem, private_key_pem, chain_pem=None):
    self.calls.append(("import_certificate", chain_pem))
    return self.import_result

  def describe_certificate(self, arn: str) -> Dict[str, str]:
    self.calls.append(("describe_certificate", arn))
    return {"CertificateArn": arn, "Status": "ISSUED"}

  def default_vpc_id(self) -> Optional[str]:
    self.calls.append(("default_vpc_id",))
    return self.vpc_id

  def list_subnets(self, vpc_id: str) -> List[str]:
    self.calls.append(("list_subnets", vpc_id))
    return list(self.subnets)

  def describe_user_pool(self, user_pool_id: str) -> Dict[str, str]:
    self.calls.append(("describe_user_pool", user_pool_id))
    return self.user_pools.get(user_pool_id, {})

  def describe_load_balancer(self, arn: str) -> Dict[str, str]:
    self.calls.append(("describe_load_balancer", arn))
    return self.load_balancers.get(arn, {})


@pytest.fixture()
def fake_aws() -> FakeAws:
  aws = FakeAws()
  aws.stack_outputs = {
    "eb-auth-demo-dev-cognito": dict(DIRECTORY_OUTPUTS),
    "eb-auth-demo-dev-alb": dict(ROUTING_OUTPUTS),
  }
  return aws


@pytest.fixture()
def project_root(tmp_path: Path) -> Path:
  (tmp_path / "cloudformation" / "parameters").mkdir(parents=True)
  (tmp_path / "cloudformation" / "cognito-infrastructure.yaml").write_text("Resources: {}\n")
  (tmp_path / "cloudformation" / "alb-cognito-integration.yaml").write_text("Resources: {}\n")
  for environment in ("dev", "staging"):
    records = [{"ParameterKey": "CallbackURLs", "ParameterValue": f"https://{environment}.example.test/cb"}]
    (tmp_path / "cloudformation" / "parameters" / f"{environment}-parameters.json").write_text(json.dumps(records))
  return tmp_path


@pytest.fixture()
def layout(project_root: Path) -> ProjectLayout:
  return ProjectLayout.from_defaults(project_root, {})


@pytest.fixture()
def context():
  return resolve({"environment": "dev"}, {}, env={})


@pytest.fixture()
def private_context():
  return resolve({"environment": "dev", "use_private_certificate": True}, {}, env={})


@pytest.fixture(scope="session")
def bundle():
  return generate_self_signed("api.example.test", "eb-auth-demo", "dev")


@pytest.fixture(scope="session")
def other_bundle():
  return generate_self_signed("other.example.test", "eb-auth-demo", "dev")
