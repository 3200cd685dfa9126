"""Private certificate material: generation, import, binding check and registration.

A bundle whose certificate and private key do not share the same public key is
never registered and never referenced by a deployment.
"""
from __future__ import annotations

import datetime
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from authfront.config import DeploymentContext, ProjectLayout
from authfront.errors import GenerationError, PreconditionError, RegistrationError, ValidationError
from authfront.models import CertificateBundle, CertificateHandle
from authfront.parameters import ParameterSet, read_parameter_file, write_parameter_file


CERTIFICATE_FILE = "certificate.pem"
PRIVATE_KEY_FILE = "private-key.pem"
CHAIN_FILE = "certificate-chain.pem"
ARN_FILE = "certificate-arn.txt"

KEY_SIZE = 2048
VALIDITY_DAYS = 365

REQUIRED_FRAGMENT_KEYS = ("CertificateArn", "UsePrivateCertificate")


@dataclass(frozen=True)
class CertificateSummary:
  subject: str
  issuer: str
  not_before: datetime.datetime
  not_after: datetime.datetime
  dns_names: List[str]

  @property
  def self_signed(self) -> bool:
    return self.subject == self.issuer


def generate_self_signed(
  domain: str,
  project_name: str,
  environment: str,
  *,
  key_size: int = KEY_SIZE,
  validity_days: int = VALIDITY_DAYS,
) -> CertificateBundle:
  if not domain:
    raise GenerationError("A domain name is required to generate a certificate.")
  try:
    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    name = x509.Name([
      x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
      x509.NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, "State"),
      x509.NameAttribute(NameOID.LOCALITY_NAME, "City"),
      x509.NameAttribute(NameOID.ORGANIZATION_NAME, project_name),
      x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, environment),
      x509.NameAttribute(NameOID.COMMON_NAME, domain),
    ])
    now = datetime.datetime.now(datetime.timezone.utc)
    certificate = (
      x509.CertificateBuilder()
      .subject_name(name)
      .issuer_name(name)
      .public_key(key.public_key())
      .serial_number(x509.random_serial_number())
      .not_valid_before(now)
      .not_valid_after(now + datetime.timedelta(days=validity_days))
      .add_extension(
        x509.SubjectAlternativeName([x509.DNSName(domain), x509.DNSName(f"*.{domain}")]),
        critical=False,
      )
      .add_extension(
        x509.KeyUsage(
          digital_signature=True,
          content_commitment=False,
          key_encipherment=True,
          data_encipherment=True,
          key_agreement=False,
          key_cert_sign=False,
          crl_sign=False,
          encipher_only=False,
          decipher_only=False,
        ),
        critical=True,
      )
      .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
      .sign(key, hashes.SHA256())
    )
  except (UnsupportedAlgorithm, ValueError, TypeError) as exc:
    raise GenerationError(f"Could not generate a self-signed certificate for '{domain}': {exc}") from exc

  certificate_pem = certificate.public_bytes(serialization.Encoding.PEM)
  key_pem = key.private_bytes(
    encoding=serialization.Encoding.PEM,
    format=serialization.PrivateFormat.TraditionalOpenSSL,
    encryption_algorithm=serialization.NoEncryption(),
  )
  # A self-signed certificate is its own chain.
  return CertificateBundle(certificate_pem=certificate_pem, private_key_pem=key_pem, chain_pem=certificate_pem)


def write_bundle(bundle: CertificateBundle, directory: Path) -> Dict[str, Path]:
  directory.mkdir(parents=True, exist_ok=True)
  paths = {
    "certificate": directory / CERTIFICATE_FILE,
    "private_key": directory / PRIVATE_KEY_FILE,
    "chain": directory / CHAIN_FILE,
  }
  paths["private_key"].write_bytes(bundle.private_key_pem)
  paths["private_key"].chmod(0o600)
  paths["certificate"].write_bytes(bundle.certificate_pem)
  paths["certificate"].chmod(0o644)
  paths["chain"].write_bytes(bundle.chain_pem)
  paths["chain"].chmod(0o644)
  return paths


def _load_certificate(data: bytes, source: str) -> x509.Certificate:
  try:
    return x509.load_pem_x509_certificate(data)
  except ValueError as exc:
    raise ValidationError(f"Invalid certificate file: {source}") from exc


def _load_private_key(data: bytes, source: str):
  try:
    return serialization.load_pem_private_key(data, password=None)
  except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
    raise ValidationError(f"Invalid private key file: {source}") from exc


def _public_identity(public_key) -> bytes:
  if isinstance(public_key, rsa.RSAPublicKey):
    modulus = public_key.public_numbers().n
    return modulus.to_bytes((modulus.bit_length() + 7) // 8, "big")
  return public_key.public_bytes(
    serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
  )


def keys_match(certificate_pem: bytes, private_key_pem: bytes) -> bool:
  """True when the certificate's public key (RSA modulus) belongs to the private key."""
  certificate = _load_certificate(certificate_pem, "<certificate>")
  key = _load_private_key(private_key_pem, "<private key>")
  return _public_identity(certificate.public_key()) == _public_identity(key.public_key())


def chain_is_parseable(chain_pem: bytes) -> bool:
  if not chain_pem.strip():
    return True
  try:
    x509.load_pem_x509_certificates(chain_pem)
  except ValueError:
    return False
  return True


def import_existing(directory: Path) -> CertificateBundle:
  for required in (CERTIFICATE_FILE, PRIVATE_KEY_FILE):
    if not (directory / required).is_file():
      raise ValidationError(f"Required certificate file not found: {directory / required}")

  certificate_pem = (directory / CERTIFICATE_FILE).read_bytes()
  private_key_pem = (directory / PRIVATE_KEY_FILE).read_bytes()
  _load_private_key(private_key_pem, str(directory / PRIVATE_KEY_FILE))
  _load_certificate(certificate_pem, str(directory / CERTIFICATE_FILE))

  chain_path = directory / CHAIN_FILE
  chain_pem = chain_path.read_bytes() if chain_path.is_file() else b""

  if not keys_match(certificate_pem, private_key_pem):
    raise ValidationError(
      f"Certificate and private key in {directory} do not match."
    )
  return CertificateBundle(certificate_pem=certificate_pem, private_key_pem=private_key_pem, chain_pem=chain_pem)


def summarize(bundle: CertificateBundle) -> CertificateSummary:
  certificate = _load_certificate(bundle.certificate_pem, "<certificate>")
  try:
    san = certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    dns_names = san.value.get_values_for_type(x509.DNSName)
  except x509.ExtensionNotFound:
    dns_names = []
  return CertificateSummary(
    subject=certificate.subject.rfc4514_string(),
    issuer=certificate.issuer.rfc4514_string(),
    not_before=certificate.not_valid_before_utc,
    not_after=certificate.not_valid_after_utc,
    dns_names=list(dns_names),
  )


def certificate_fragment(context: DeploymentContext, handle: CertificateHandle) -> ParameterSet:
  fragment = ParameterSet(context.base_parameters())
  fragment["ElasticBeanstalkEnvironmentName"] = context.application_environment_name
  return fragment.merge(handle.fragment())


def register_certificate(
  bundle: CertificateBundle,
  store,
  context: DeploymentContext,
  layout: ProjectLayout,
  output_directory: Optional[Path] = None,
) -> CertificateHandle:
  """Import ``bundle`` into the certificate store and record the hand-off artifacts.

  Writes the per-environment parameter fragment consumed by ``deploy`` and the
  raw ARN next to the certificate material. A rejection from the store is
  raised as :class:`RegistrationError` without retrying.
  """
  if not keys_match(bundle.certificate_pem, bundle.private_key_pem):
    raise ValidationError("Certificate and private key do not match; refusing to register.")

  arn, reason = store.import_certificate(
    bundle.certificate_pem,
    bundle.private_key_pem,
    bundle.chain_pem if bundle.has_chain else None,
  )
  if not arn:
    raise RegistrationError(f"Failed to import certificate into ACM: {reason}")

  handle = CertificateHandle(arn=arn, is_private=True)
  write_parameter_file(layout.certificate_parameter_file(context.environment), certificate_fragment(context, handle))

  output_directory = output_directory or layout.certificates_directory
  output_directory.mkdir(parents=True, exist_ok=True)
  (output_directory / ARN_FILE).write_text(f"{arn}\n", encoding="utf-8")
  return handle


def load_certificate_handle(path: Path) -> CertificateHandle:
  """Read the hand-off fragment written by :func:`register_certificate`."""
  if not path.is_file():
    raise PreconditionError(
      f"Private certificate parameter file not found: {path}. "
      "Run 'authfront certificate' for this environment first."
    )
  try:
    fragment = read_parameter_file(path)
  except ValidationError as exc:
    raise PreconditionError(str(exc)) from exc
  for key in REQUIRED_FRAGMENT_KEYS:
    if key not in fragment:
      raise PreconditionError(f"Missing required parameter '{key}' in {path}")
  if not fragment["CertificateArn"]:
    raise PreconditionError(f"Parameter 'CertificateArn' in {path} is empty.")
  return CertificateHandle(
    arn=fragment["CertificateArn"],
    is_private=fragment["UsePrivateCertificate"].lower() == "true",
  )
