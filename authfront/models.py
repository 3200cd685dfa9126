from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


HEALTHY_STACK_STATUSES = frozenset({"CREATE_COMPLETE", "UPDATE_COMPLETE", "IMPORT_COMPLETE"})


def is_terminal_status(status: str) -> bool:
  return not status.endswith("_IN_PROGRESS")


class TerminalStatus(str, Enum):
  CREATED_OR_UPDATED = "CreatedOrUpdated"
  NO_CHANGES = "NoChangesNeeded"
  FAILED = "Failed"


@dataclass
class StackDescription:
  stack_name: str
  status: str
  outputs: Dict[str, str] = field(default_factory=dict)

  @property
  def healthy(self) -> bool:
    return self.status in HEALTHY_STACK_STATUSES


@dataclass
class StackDeploymentResult:
  stack_name: str
  terminal_status: TerminalStatus
  outputs: Dict[str, str] = field(default_factory=dict)
  message: str = ""
  # False when the service rejected the input rather than failing the stack.
  retryable: bool = True

  @property
  def succeeded(self) -> bool:
    return self.terminal_status is not TerminalStatus.FAILED


@dataclass(frozen=True)
class NetworkTopology:
  network_id: str
  subnet_ids: Tuple[str, ...]

  def fragment(self) -> Dict[str, str]:
    return {"VpcId": self.network_id, "SubnetIds": ",".join(self.subnet_ids)}


@dataclass(frozen=True)
class CertificateBundle:
  certificate_pem: bytes
  private_key_pem: bytes
  chain_pem: bytes = b""

  @property
  def has_chain(self) -> bool:
    return bool(self.chain_pem.strip())


@dataclass(frozen=True)
class CertificateHandle:
  arn: str
  is_private: bool = True

  def fragment(self) -> Dict[str, str]:
    return {
      "CertificateArn": self.arn,
      "UsePrivateCertificate": "true" if self.is_private else "false",
    }


class FindingStatus(str, Enum):
  PASS = "PASS"
  WARN = "WARN"
  FAIL = "FAIL"


@dataclass(frozen=True)
class ValidationFinding:
  check: str
  status: FindingStatus
  detail: str = ""


@dataclass
class ValidationReport:
  findings: List[ValidationFinding] = field(default_factory=list)
  report_path: Optional[str] = None

  def add(self, check: str, status: FindingStatus, detail: str = "") -> ValidationFinding:
    finding = ValidationFinding(check=check, status=status, detail=detail)
    self.findings.append(finding)
    return finding

  def by_status(self, status: FindingStatus) -> List[ValidationFinding]:
    return [finding for finding in self.findings if finding.status is status]

  @property
  def passed(self) -> bool:
    return not self.by_status(FindingStatus.FAIL)
