"""Error taxonomy shared by every command.

Each error is fatal to the current invocation. ``main`` prints the category
and the one-line cause, then exits with the class exit code.
"""
from __future__ import annotations


class AuthFrontError(Exception):
  category = "error"
  exit_code = 1


class UsageError(AuthFrontError):
  category = "usage"
  exit_code = 2


class PreconditionError(AuthFrontError):
  category = "precondition"
  exit_code = 3


class ValidationError(AuthFrontError):
  category = "validation"
  exit_code = 4


class TemplateError(AuthFrontError):
  category = "template"
  exit_code = 5


class TopologyError(AuthFrontError):
  category = "topology"
  exit_code = 6


class RegistrationError(AuthFrontError):
  category = "registration"
  exit_code = 7


class DeploymentError(AuthFrontError):
  """The provisioning service rejected or failed an operation.

  ``retryable`` is True when the stack reached a failed terminal status; the
  whole invocation can be re-run because each deploy is idempotent per stack
  name. Malformed input is not retryable without correction.
  """

  category = "deployment"
  exit_code = 8

  def __init__(self, message: str, *, stack_name: str = "", retryable: bool = True) -> None:
    super().__init__(message)
    self.stack_name = stack_name
    self.retryable = retryable


class GenerationError(AuthFrontError):
  category = "generation"
  exit_code = 9
