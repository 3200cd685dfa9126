"""Layered configuration for a single deployment invocation.

Precedence, lowest first: built-in defaults, the ``defaults`` block of the
environments file, the ``environments.<name>`` block, ``AUTHFRONT_*``
environment variables and finally command-line flags.
"""
from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from authfront.errors import UsageError


BUILTIN_DEFAULTS: Dict[str, Any] = {
  "project": "eb-auth-demo",
  "environment": "dev",
  "region": "us-east-1",
  "certificate_mode": "managed",
  "templates": {
    "directory": "cloudformation/cognito-infrastructure.yaml",
    "routing": "cloudformation/alb-cognito-integration.yaml",
  },
  "parameters_directory": "cloudformation/parameters",
  "certificates_directory": "certificates",
  "validated_environments": ["dev", "staging"],
  "required_files": [
    ".ebextensions/01-cognito-config.config",
    ".ebextensions/02-alb-listener-rules.config",
  ],
  "stack_parameters": {},
  "wait_timeout": 600,
}

KNOWN_FLAGS = frozenset({
  "project",
  "environment",
  "region",
  "stack_prefix",
  "use_private_certificate",
  "certificate_mode",
})

ENVIRONMENT_VARIABLES = {
  "AUTHFRONT_PROJECT": "project",
  "AUTHFRONT_ENVIRONMENT": "environment",
  "AUTHFRONT_REGION": "region",
  "AUTHFRONT_CERTIFICATE_MODE": "certificate_mode",
}


class CertificateMode(str, Enum):
  MANAGED = "managed"
  PRIVATE = "private"


@dataclass(frozen=True)
class DeploymentContext:
  project_name: str
  environment: str
  region: str
  stack_prefix: str
  certificate_mode: CertificateMode = CertificateMode.MANAGED

  @property
  def directory_stack_name(self) -> str:
    return f"{self.stack_prefix}-cognito"

  @property
  def routing_stack_name(self) -> str:
    return f"{self.stack_prefix}-alb"

  @property
  def application_environment_name(self) -> str:
    return f"{self.project_name}-{self.environment}-env"

  @property
  def uses_private_certificate(self) -> bool:
    return self.certificate_mode is CertificateMode.PRIVATE

  def base_parameters(self) -> Dict[str, str]:
    return {"ProjectName": self.project_name, "Environment": self.environment}


@dataclass(frozen=True)
class ProjectLayout:
  root: Path
  directory_template: Path
  routing_template: Path
  parameters_directory: Path
  certificates_directory: Path
  required_files: Tuple[Path, ...] = ()
  validated_environments: Tuple[str, ...] = ()

  @classmethod
  def from_defaults(cls, root: Path, defaults: Mapping[str, Any]) -> "ProjectLayout":
    merged = _deep_merge(BUILTIN_DEFAULTS, dict(defaults))
    templates = merged["templates"]
    return cls(
      root=root,
      directory_template=_under(root, templates["directory"]),
      routing_template=_under(root, templates["routing"]),
      parameters_directory=_under(root, merged["parameters_directory"]),
      certificates_directory=_under(root, merged["certificates_directory"]),
      required_files=tuple(_under(root, entry) for entry in merged["required_files"]),
      validated_environments=tuple(merged["validated_environments"]),
    )

  @property
  def templates(self) -> Tuple[Path, Path]:
    return self.directory_template, self.routing_template

  def environment_parameter_file(self, environment: str) -> Path:
    return self.parameters_directory / f"{environment}-parameters.json"

  def certificate_parameter_file(self, environment: str) -> Path:
    return self.parameters_directory / f"{environment}-private-cert-parameters.json"


def _under(root: Path, value: str) -> Path:
  candidate = Path(value)
  if candidate.is_absolute():
    return candidate
  return root / candidate


def _deep_merge(base: Any, override: Any) -> Any:
  if isinstance(base, dict) and isinstance(override, dict):
    result = copy.deepcopy(base)
    for key, value in override.items():
      if key in result:
        result[key] = _deep_merge(result[key], value)
      else:
        result[key] = copy.deepcopy(value)
    return result
  return copy.deepcopy(override)


def load_environment_defaults(path: Optional[Path], environment: str) -> Dict[str, Any]:
  """Return built-in defaults merged with the ``defaults`` and per-environment blocks of ``path``."""
  merged = copy.deepcopy(BUILTIN_DEFAULTS)
  if path is None or not path.is_file():
    return merged

  with path.open("r", encoding="utf-8") as handle:
    loaded = yaml.safe_load(handle) or {}
  if not isinstance(loaded, dict):
    raise UsageError(f"Configuration file {path} must parse to a mapping.")

  shared = loaded.get("defaults") or {}
  environments = loaded.get("environments") or {}
  if not isinstance(shared, dict) or not isinstance(environments, dict):
    raise UsageError(f"Configuration file {path}: 'defaults' and 'environments' must be mappings.")

  overlay = environments.get(environment) or {}
  if not isinstance(overlay, dict):
    raise UsageError(f"Configuration file {path}: environments.{environment} must be a mapping.")

  merged = _deep_merge(merged, shared)
  return _deep_merge(merged, overlay)


def environment_overrides(env: Mapping[str, str]) -> Dict[str, str]:
  return {
    key: env[variable]
    for variable, key in ENVIRONMENT_VARIABLES.items()
    if env.get(variable)
  }


def select_environment(flags: Mapping[str, Any], env: Optional[Mapping[str, str]] = None) -> str:
  if flags.get("environment"):
    return str(flags["environment"])
  env = os.environ if env is None else env
  return env.get("AUTHFRONT_ENVIRONMENT") or BUILTIN_DEFAULTS["environment"]


def _certificate_mode(value: Any) -> CertificateMode:
  try:
    return CertificateMode(str(value).lower())
  except ValueError:
    choices = ", ".join(mode.value for mode in CertificateMode)
    raise UsageError(f"Unknown certificate mode '{value}' (expected one of: {choices}).") from None


def resolve(
  flags: Mapping[str, Any],
  environment_defaults: Mapping[str, Any],
  env: Optional[Mapping[str, str]] = None,
) -> DeploymentContext:
  unknown = sorted(set(flags) - KNOWN_FLAGS)
  if unknown:
    raise UsageError(f"Unknown option(s): {', '.join(unknown)}")

  layered: Dict[str, Any] = dict(BUILTIN_DEFAULTS)
  layered.update({key: value for key, value in environment_defaults.items() if value is not None})
  layered.update(environment_overrides(os.environ if env is None else env))
  layered.update({key: value for key, value in flags.items() if value is not None})

  mode = _certificate_mode(layered.get("certificate_mode", CertificateMode.MANAGED.value))
  if layered.get("use_private_certificate"):
    mode = CertificateMode.PRIVATE

  project = str(layered["project"])
  environment = str(layered["environment"])
  stack_prefix = layered.get("stack_prefix") or f"{project}-{environment}"

  return DeploymentContext(
    project_name=project,
    environment=environment,
    region=str(layered["region"]),
    stack_prefix=str(stack_prefix),
    certificate_mode=mode,
  )
