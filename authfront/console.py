from __future__ import annotations

import os
import sys
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, TextIO


PALETTE_KEYS = ("heading", "ok", "warn", "fail", "info", "reset")


class ColorMode(str, Enum):
  AUTO = "auto"
  ALWAYS = "always"
  NEVER = "never"


def _supports_color_output() -> bool:
  stream = getattr(sys.stdout, "isatty", None)
  return bool(stream and stream()) and os.environ.get("NO_COLOR") is None


def build_console_palette(requested_mode: str) -> Dict[str, str]:
  try:
    mode = ColorMode(requested_mode or ColorMode.AUTO.value)
  except ValueError:
    mode = ColorMode.AUTO

  use_color = mode is ColorMode.ALWAYS or (mode is ColorMode.AUTO and _supports_color_output())
  palette = {key: "" for key in PALETTE_KEYS}
  if use_color:
    palette.update({
      "heading": "\033[1m",
      "ok": "\033[0;32m",
      "warn": "\033[1;33m",
      "fail": "\033[0;31m",
      "info": "\033[0;34m",
      "reset": "\033[0m",
    })
  return palette


class Console:
  """Timestamped progress output; warnings and errors go to stderr."""

  def __init__(
    self,
    palette: Optional[Dict[str, str]] = None,
    out: Optional[TextIO] = None,
    err: Optional[TextIO] = None,
  ) -> None:
    self.palette = palette or {key: "" for key in PALETTE_KEYS}
    self._out = out
    self._err = err

  @property
  def out(self) -> TextIO:
    return self._out or sys.stdout

  @property
  def err(self) -> TextIO:
    return self._err or sys.stderr

  def _stamp(self) -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")

  def _paint(self, key: str, text: str) -> str:
    return f"{self.palette.get(key, '')}{text}{self.palette.get('reset', '')}"

  def log(self, message: str) -> None:
    print(self._paint("ok", f"[{self._stamp()}] {message}"), file=self.out)

  def info(self, message: str) -> None:
    print(self._paint("info", f"[{self._stamp()}] {message}"), file=self.out)

  def warn(self, message: str) -> None:
    print(self._paint("warn", f"[{self._stamp()}] WARNING: {message}"), file=self.err)

  def error(self, category: str, message: str) -> None:
    print(self._paint("fail", f"[{self._stamp()}] ERROR [{category}]: {message}"), file=self.err)

  def success(self, message: str) -> None:
    print(self._paint("ok", f"✓ {message}"), file=self.out)

  def fail(self, message: str) -> None:
    print(self._paint("fail", f"✗ {message}"), file=self.out)

  def heading(self, message: str) -> None:
    print(self._paint("heading", message), file=self.out)

  def plain(self, message: str = "") -> None:
    print(message, file=self.out)
