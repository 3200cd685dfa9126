"""Ordered deployment of the directory (Cognito) and routing (ALB) stacks.

The routing stack's parameters depend on the network discovered after the
directory stack is up, so every step runs strictly in sequence. Each deploy is
idempotent per stack name: an interrupted run is recovered by running again.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from authfront.config import DeploymentContext, ProjectLayout
from authfront.console import Console
from authfront.errors import DeploymentError, PreconditionError, TemplateError, TopologyError
from authfront.models import (
  CertificateHandle,
  FindingStatus,
  NetworkTopology,
  StackDeploymentResult,
  TerminalStatus,
  ValidationFinding,
)
from authfront.parameters import ParameterSet, read_parameter_file


DIRECTORY_OUTPUTS = ("UserPoolId", "UserPoolDomain")
ROUTING_OUTPUTS = ("LoadBalancerDNSName",)
MAX_SUBNETS = 2


class OrchestratorState(str, Enum):
  IDLE = "Idle"
  TEMPLATES_VALIDATED = "TemplatesValidated"
  DIRECTORY_STACK_DEPLOYED = "DirectoryStackDeployed"
  NETWORK_DISCOVERED = "NetworkDiscovered"
  ROUTING_STACK_DEPLOYED = "RoutingStackDeployed"
  DONE = "Done"


STATE_ORDER = list(OrchestratorState)


@dataclass
class DeploymentOutcome:
  directory: StackDeploymentResult
  routing: StackDeploymentResult
  topology: NetworkTopology
  outputs: Dict[str, str] = field(default_factory=dict)
  findings: List[ValidationFinding] = field(default_factory=list)

  @property
  def complete(self) -> bool:
    return not any(finding.status is FindingStatus.FAIL for finding in self.findings)


def select_topology(network_id: Optional[str], subnet_ids: List[str]) -> NetworkTopology:
  if not network_id:
    raise TopologyError("No default VPC found. Create one or point the routing stack at an explicit VPC.")
  if not subnet_ids:
    raise TopologyError(f"No subnets found in VPC {network_id}")
  return NetworkTopology(network_id=network_id, subnet_ids=tuple(subnet_ids[:MAX_SUBNETS]))


class StackOrchestrator:
  def __init__(
    self,
    context: DeploymentContext,
    provisioning,
    layout: ProjectLayout,
    *,
    overrides: Optional[Mapping[str, str]] = None,
    capabilities: Tuple[str, ...] = ("CAPABILITY_IAM",),
    wait_timeout: float = 600,
    console: Optional[Console] = None,
  ) -> None:
    self.context = context
    self.provisioning = provisioning
    self.layout = layout
    self.overrides = ParameterSet(overrides or {})
    self.capabilities = capabilities
    self.wait_timeout = wait_timeout
    self.console = console or Console()
    self.state = OrchestratorState.IDLE

  def _require_next(self, target: OrchestratorState) -> None:
    position = STATE_ORDER.index(self.state) + 1
    if position >= len(STATE_ORDER) or target is not STATE_ORDER[position]:
      raise RuntimeError(f"Cannot move from {self.state.value} to {target.value}.")

  # -- preflight --------------------------------------------------------

  def require_certificate(self, certificate: Optional[CertificateHandle]) -> None:
    if not self.context.uses_private_certificate:
      return
    if certificate is None:
      raise PreconditionError(
        "Private certificate mode requires a registered certificate; "
        f"run 'authfront certificate -e {self.context.environment}' first."
      )
    if not certificate.is_private or not certificate.arn:
      raise PreconditionError("The supplied certificate handle is not a registered private certificate.")

  def check_preconditions(self, certificate: Optional[CertificateHandle]) -> None:
    self.require_certificate(certificate)
    identity = self.provisioning.caller_identity()
    self.console.log(f"AWS credentials verified (account: {identity.get('Account', 'unknown')})")

  # -- steps ------------------------------------------------------------

  def validate_templates(self) -> None:
    self._require_next(OrchestratorState.TEMPLATES_VALIDATED)
    self.console.log("Validating CloudFormation templates...")
    for template in self.layout.templates:
      if not template.is_file():
        raise TemplateError(f"Template not found: {template}")
      valid, reason = self.provisioning.validate_template(template)
      if not valid:
        raise TemplateError(f"Template invalid: {template}: {reason}")
    self.state = OrchestratorState.TEMPLATES_VALIDATED

  def directory_parameters(self) -> ParameterSet:
    parameters = ParameterSet(self.context.base_parameters())
    parameter_file = self.layout.environment_parameter_file(self.context.environment)
    if parameter_file.is_file():
      parameters.merge(read_parameter_file(parameter_file))
    return parameters.merge(self.overrides)

  def _deploy(self, template: Path, stack_name: str, parameters: ParameterSet) -> StackDeploymentResult:
    self.console.log(f"Deploying stack '{stack_name}'...")
    result = self.provisioning.deploy_stack(template, stack_name, parameters, self.capabilities)
    if result.terminal_status is TerminalStatus.FAILED:
      raise DeploymentError(
        f"Failed to deploy stack '{stack_name}': {result.message or 'no details reported'}",
        stack_name=stack_name,
        retryable=result.retryable,
      )

    description = self.provisioning.wait_for_stack(stack_name, timeout=self.wait_timeout)
    if not description.healthy:
      raise DeploymentError(
        f"Stack '{stack_name}' finished in status {description.status}.",
        stack_name=stack_name,
        retryable=True,
      )
    result.outputs = dict(description.outputs)
    if result.terminal_status is TerminalStatus.NO_CHANGES:
      self.console.log(f"Stack '{stack_name}' is already up to date ✓")
    else:
      self.console.log(f"Stack '{stack_name}' deployed successfully ✓")
    return result

  def deploy_directory_stack(self) -> StackDeploymentResult:
    self._require_next(OrchestratorState.DIRECTORY_STACK_DEPLOYED)
    result = self._deploy(
      self.layout.directory_template,
      self.context.directory_stack_name,
      self.directory_parameters(),
    )
    self.state = OrchestratorState.DIRECTORY_STACK_DEPLOYED
    return result

  def discover_network(self) -> NetworkTopology:
    self._require_next(OrchestratorState.NETWORK_DISCOVERED)
    self.console.log("Getting VPC and subnet information...")
    network_id = self.provisioning.default_vpc_id()
    subnet_ids = self.provisioning.list_subnets(network_id) if network_id else []
    topology = select_topology(network_id, subnet_ids)
    self.console.log(f"Using VPC: {topology.network_id}")
    self.console.log(f"Using Subnets: {','.join(topology.subnet_ids)}")
    self.state = OrchestratorState.NETWORK_DISCOVERED
    return topology

  def routing_parameters(
    self, topology: NetworkTopology, certificate: Optional[CertificateHandle]
  ) -> ParameterSet:
    parameters = ParameterSet(self.context.base_parameters())
    parameters.merge({
      "ElasticBeanstalkEnvironmentName": self.context.application_environment_name,
      "CertificateArn": "",
      "UsePrivateCertificate": "false",
    })
    if self.context.uses_private_certificate and certificate is not None:
      parameters.merge(certificate.fragment())
    parameters.merge(topology.fragment())
    return parameters.merge(self.overrides)

  def deploy_routing_stack(
    self, topology: NetworkTopology, certificate: Optional[CertificateHandle]
  ) -> StackDeploymentResult:
    self._require_next(OrchestratorState.ROUTING_STACK_DEPLOYED)
    self.require_certificate(certificate)
    if self.context.uses_private_certificate:
      self.console.log("Using private certificate configuration...")
    else:
      self.console.log("Using ACM certificate configuration...")
    result = self._deploy(
      self.layout.routing_template,
      self.context.routing_stack_name,
      self.routing_parameters(topology, certificate),
    )
    self.state = OrchestratorState.ROUTING_STACK_DEPLOYED
    return result

  def aggregate_outputs(
    self, directory: StackDeploymentResult, routing: StackDeploymentResult
  ) -> Tuple[Dict[str, str], List[ValidationFinding]]:
    self._require_next(OrchestratorState.DONE)
    outputs: Dict[str, str] = {}
    findings: List[ValidationFinding] = []
    for result, keys in ((directory, DIRECTORY_OUTPUTS), (routing, ROUTING_OUTPUTS)):
      for key in keys:
        value = result.outputs.get(key)
        check = f"output {result.stack_name}.{key}"
        if value:
          outputs[key] = value
          findings.append(ValidationFinding(check, FindingStatus.PASS, value))
        else:
          findings.append(ValidationFinding(check, FindingStatus.FAIL, "expected output is missing"))
    self.state = OrchestratorState.DONE
    return outputs, findings

  # -- full run ---------------------------------------------------------

  def run(self, certificate: Optional[CertificateHandle] = None) -> DeploymentOutcome:
    self.check_preconditions(certificate)
    self.validate_templates()
    directory = self.deploy_directory_stack()
    topology = self.discover_network()
    routing = self.deploy_routing_stack(topology, certificate)
    outputs, findings = self.aggregate_outputs(directory, routing)
    return DeploymentOutcome(
      directory=directory,
      routing=routing,
      topology=topology,
      outputs=outputs,
      findings=findings,
    )
