import pytest

from authfront.errors import DeploymentError, PreconditionError, TemplateError, TopologyError
from authfront.models import CertificateHandle, FindingStatus, StackDescription, TerminalStatus
from authfront.orchestrator import OrchestratorState, StackOrchestrator, select_topology


HANDLE = CertificateHandle("arn:aws:acm:us-east-1:123456789012:certificate/abc-123")


def _orchestrator(context, fake_aws, layout, **kwargs):
  return StackOrchestrator(context, fake_aws, layout, **kwargs)


def test_full_run_deploys_in_order(context, fake_aws, layout):
  orchestrator = _orchestrator(context, fake_aws, layout)
  outcome = orchestrator.run()

  assert orchestrator.state is OrchestratorState.DONE
  assert fake_aws.deployed_stack_names() == ["eb-auth-demo-dev-cognito", "eb-auth-demo-dev-alb"]
  names = [call[0] for call in fake_aws.calls]
  assert names.index("validate_template") < names.index("deploy_stack")
  assert names.index("default_vpc_id") > names.index("wait_for_stack")
  assert outcome.outputs == {
    "UserPoolId": "us-east-1_Pool",
    "UserPoolDomain": "eb-auth-demo-dev-123",
    "LoadBalancerDNSName": "x-1.us-east-1.elb.amazonaws.com",
  }
  assert outcome.complete


def test_routing_parameters_carry_network_and_managed_certificate(context, fake_aws, layout):
  _orchestrator(context, fake_aws, layout).run()
  routing = fake_aws.calls_named("deploy_stack")[1][2]
  assert routing["VpcId"] == "vpc-0default"
  assert routing["SubnetIds"] == "subnet-a,subnet-b"
  assert routing["CertificateArn"] == ""
  assert routing["UsePrivateCertificate"] == "false"
  assert routing["ElasticBeanstalkEnvironmentName"] == "eb-auth-demo-dev-env"


def test_directory_parameters_include_environment_file(context, fake_aws, layout):
  _orchestrator(context, fake_aws, layout, overrides={"Environment": "dev", "Extra": "1"}).run()
  directory = fake_aws.calls_named("deploy_stack")[0][2]
  assert directory["ProjectName"] == "eb-auth-demo"
  assert directory["CallbackURLs"] == "https://dev.example.test/cb"
  assert directory["Extra"] == "1"


def test_private_mode_merges_certificate_handle(private_context, fake_aws, layout):
  fake_aws.stack_outputs = {
    "eb-auth-demo-dev-cognito": {"UserPoolId": "p", "UserPoolDomain": "d"},
    "eb-auth-demo-dev-alb": {"LoadBalancerDNSName": "lb"},
  }
  _orchestrator(private_context, fake_aws, layout).run(HANDLE)
  routing = fake_aws.calls_named("deploy_stack")[1][2]
  assert routing["CertificateArn"] == HANDLE.arn
  assert routing["UsePrivateCertificate"] == "true"


def test_rerun_is_idempotent(context, fake_aws, layout):
  first = _orchestrator(context, fake_aws, layout).run()
  second = _orchestrator(context, fake_aws, layout).run()

  assert first.directory.terminal_status is TerminalStatus.CREATED_OR_UPDATED
  assert second.directory.terminal_status is TerminalStatus.NO_CHANGES
  assert second.routing.terminal_status is TerminalStatus.NO_CHANGES
  assert second.outputs == first.outputs


def test_private_mode_without_certificate_makes_no_routing_calls(private_context, fake_aws, layout):
  with pytest.raises(PreconditionError):
    _orchestrator(private_context, fake_aws, layout).run(None)
  assert "eb-auth-demo-dev-alb" not in fake_aws.deployed_stack_names()
  assert fake_aws.calls_named("deploy_stack") == []


def test_private_mode_rejects_non_private_handle(private_context, fake_aws, layout):
  with pytest.raises(PreconditionError):
    _orchestrator(private_context, fake_aws, layout).run(CertificateHandle("arn:x", is_private=False))


def test_missing_credentials_halts_before_validation(context, fake_aws, layout):
  fake_aws.identity = None
  with pytest.raises(PreconditionError, match="credentials"):
    _orchestrator(context, fake_aws, layout).run()
  assert fake_aws.calls_named("validate_template") == []


def test_invalid_template_halts_before_any_deploy(context, fake_aws, layout):
  fake_aws.invalid_templates.add("alb-cognito-integration.yaml")
  orchestrator = _orchestrator(context, fake_aws, layout)
  with pytest.raises(TemplateError, match="alb-cognito-integration.yaml"):
    orchestrator.run()
  assert fake_aws.calls_named("deploy_stack") == []
  assert orchestrator.state is OrchestratorState.IDLE


def test_missing_template_is_template_error(context, fake_aws, layout):
  layout.directory_template.unlink()
  with pytest.raises(TemplateError, match="not found"):
    _orchestrator(context, fake_aws, layout).run()


def test_zero_subnets_is_topology_error_before_merge(context, fake_aws, layout, monkeypatch):
  fake_aws.subnets = []
  orchestrator = _orchestrator(context, fake_aws, layout)

  def fail_if_called(*args, **kwargs):
    raise AssertionError("routing parameters must not be built without a topology")

  monkeypatch.setattr(orchestrator, "routing_parameters", fail_if_called)
  with pytest.raises(TopologyError, match="No subnets"):
    orchestrator.run()
  assert fake_aws.deployed_stack_names() == ["eb-auth-demo-dev-cognito"]
  assert orchestrator.state is OrchestratorState.DIRECTORY_STACK_DEPLOYED


def test_missing_default_vpc_is_topology_error(context, fake_aws, layout):
  fake_aws.vpc_id = None
  with pytest.raises(TopologyError, match="default VPC"):
    _orchestrator(context, fake_aws, layout).run()
  assert fake_aws.calls_named("list_subnets") == []


def test_select_topology_keeps_provider_order():
  topology = select_topology("vpc-1", ["subnet-z", "subnet-a", "subnet-m"])
  assert topology.subnet_ids == ("subnet-z", "subnet-a")
  assert select_topology("vpc-1", ["subnet-only"]).subnet_ids == ("subnet-only",)


def test_failed_deploy_is_retryable_deployment_error(context, fake_aws, layout):
  fake_aws.failing_stacks.add("eb-auth-demo-dev-cognito")
  with pytest.raises(DeploymentError) as excinfo:
    _orchestrator(context, fake_aws, layout).run()
  assert excinfo.value.retryable
  assert excinfo.value.stack_name == "eb-auth-demo-dev-cognito"
  assert "Rate exceeded" in str(excinfo.value)
  assert fake_aws.calls_named("default_vpc_id") == []


def test_rejected_input_is_not_retryable_deployment_error(context, fake_aws, layout):
  fake_aws.rejected_stacks.add("eb-auth-demo-dev-alb")
  with pytest.raises(DeploymentError, match="must have values") as excinfo:
    _orchestrator(context, fake_aws, layout).run()
  assert not excinfo.value.retryable
  assert excinfo.value.stack_name == "eb-auth-demo-dev-alb"


def test_routing_step_requires_certificate_in_private_mode(private_context, fake_aws, layout):
  orchestrator = _orchestrator(private_context, fake_aws, layout)
  orchestrator.validate_templates()
  orchestrator.deploy_directory_stack()
  topology = orchestrator.discover_network()

  with pytest.raises(PreconditionError):
    orchestrator.deploy_routing_stack(topology, None)
  with pytest.raises(PreconditionError):
    orchestrator.deploy_routing_stack(topology, CertificateHandle("arn:x", is_private=False))
  assert fake_aws.deployed_stack_names() == ["eb-auth-demo-dev-cognito"]
  assert orchestrator.state is OrchestratorState.NETWORK_DISCOVERED

  orchestrator.deploy_routing_stack(topology, HANDLE)
  assert fake_aws.deployed_stack_names() == ["eb-auth-demo-dev-cognito", "eb-auth-demo-dev-alb"]

def test_unhealthy_terminal_status_is_deployment_error(context, fake_aws, layout, monkeypatch):
  def rolled_back(stack_name, *, timeout=600, interval=5):
    return StackDescription(stack_name, "ROLLBACK_COMPLETE")

  monkeypatch.setattr(fake_aws, "wait_for_stack", rolled_back)
  with pytest.raises(DeploymentError, match="ROLLBACK_COMPLETE"):
    _orchestrator(context, fake_aws, layout).run()


def test_missing_output_is_fail_finding_not_exception(context, fake_aws, layout):
  fake_aws.stack_outputs["eb-auth-demo-dev-alb"] = {}
  outcome = _orchestrator(context, fake_aws, layout).run()
  failed = [finding for finding in outcome.findings if finding.status is FindingStatus.FAIL]
  assert [finding.check for finding in failed] == ["output eb-auth-demo-dev-alb.LoadBalancerDNSName"]
  assert not outcome.complete


def test_steps_cannot_run_out_of_order(context, fake_aws, layout):
  orchestrator = _orchestrator(context, fake_aws, layout)
  with pytest.raises(RuntimeError):
    orchestrator.deploy_directory_stack()
