"""Stack parameter sets and their on-disk record format.

Parameter files hold a JSON array of ``{"ParameterKey": ..., "ParameterValue": ...}``
records, the format accepted by ``aws cloudformation`` parameter overrides.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, MutableMapping, Optional

from authfront.errors import ValidationError


class ParameterSet(MutableMapping[str, str]):
  def __init__(self, initial: Optional[Mapping[str, str]] = None) -> None:
    self._values: Dict[str, str] = {}
    if initial:
      self.merge(initial)

  def __getitem__(self, key: str) -> str:
    return self._values[key]

  def __setitem__(self, key: str, value: str) -> None:
    self._values[str(key)] = "" if value is None else str(value)

  def __delitem__(self, key: str) -> None:
    del self._values[key]

  def __iter__(self) -> Iterator[str]:
    return iter(self._values)

  def __len__(self) -> int:
    return len(self._values)

  def __repr__(self) -> str:
    return f"ParameterSet({self._values!r})"

  def merge(self, fragment: Mapping[str, str]) -> "ParameterSet":
    for key, value in fragment.items():
      self[key] = value
    return self

  def merged(self, *fragments: Mapping[str, str]) -> "ParameterSet":
    result = ParameterSet(self)
    for fragment in fragments:
      result.merge(fragment)
    return result

  def to_overrides(self) -> List[str]:
    return [f"{key}={value}" for key, value in self._values.items()]

  def to_records(self) -> List[Dict[str, str]]:
    return [{"ParameterKey": key, "ParameterValue": value} for key, value in self._values.items()]

  @classmethod
  def from_records(cls, records: Iterable[Mapping[str, str]], source: str = "<records>") -> "ParameterSet":
    parameters = cls()
    for position, record in enumerate(records):
      if not isinstance(record, dict) or "ParameterKey" not in record or "ParameterValue" not in record:
        raise ValidationError(
          f"{source}: entry {position} must contain both 'ParameterKey' and 'ParameterValue'."
        )
      parameters[record["ParameterKey"]] = record["ParameterValue"]
    return parameters


def parse_override(raw: str) -> Dict[str, str]:
  key, separator, value = raw.partition("=")
  if not separator or not key:
    raise ValidationError(f"Parameter override '{raw}' must use the form KEY=VALUE.")
  return {key: value}


def read_parameter_file(path: Path) -> ParameterSet:
  try:
    with path.open("r", encoding="utf-8") as handle:
      payload = json.load(handle)
  except json.JSONDecodeError as exc:
    raise ValidationError(f"Invalid JSON in parameter file {path}: {exc.msg} (line {exc.lineno}).") from exc
  if not isinstance(payload, list):
    raise ValidationError(f"Parameter file {path} must contain a JSON array.")
  return ParameterSet.from_records(payload, source=str(path))


def write_parameter_file(path: Path, parameters: Mapping[str, str]) -> Path:
  path.parent.mkdir(parents=True, exist_ok=True)
  records = ParameterSet(parameters).to_records()
  with path.open("w", encoding="utf-8") as handle:
    json.dump(records, handle, indent=2)
    handle.write("\n")
  return path
