"""Workload runtime configuration sinks (dotenv files)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Protocol

logger = logging.getLogger("stackbind.sink")

_NEEDS_QUOTES = set(" #\"'\t$")


class WorkloadSink(Protocol):
    def push(self, env: Mapping[str, str], secrets: Mapping[str, str]) -> None: ...


@dataclass
class DotenvDocument:
    """
    A dotenv file kept line by line.
    Comments, blank lines and unknown keys survive a load/set/save cycle.
    """

    lines: list[str] = field(default_factory=list)
    positions: dict[str, int] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path) -> "DotenvDocument":
        doc = cls()
        if Path(path).is_file():
            for raw in Path(path).read_text(encoding="utf-8").splitlines():
                doc._append(raw)
        return doc

    def _append(self, raw: str) -> None:
        key = _key_of(raw)
        if key is not None:
            self.positions[key] = len(self.lines)
        self.lines.append(raw)

    def values(self) -> dict[str, str]:
        return {key: _unquote(self.lines[i].split("=", 1)[1]) for key, i in self.positions.items()}

    def set(self, key: str, value: str) -> None:
        entry = f"{key}={_quote(value)}"
        if key in self.positions:
            self.lines[self.positions[key]] = entry
        else:
            self._append(entry)

    def render(self) -> str:
        return "\n".join(self.lines) + "\n"

    def save(self, path: Path, *, mode: int | None = None) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        if mode is None:
            path.write_text(self.render(), encoding="utf-8")
            return
        # The file never exists with wider permissions than `mode`.
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        os.chmod(path, mode)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(self.render())


def load_env_file(path: Path) -> dict[str, str]:
    return DotenvDocument.load(path).values()


def upsert_env_file(path: Path, values: Mapping[str, str], *, mode: int | None = None) -> None:
    """Replace or append keys, keeping comments and unrelated keys in place."""
    doc = DotenvDocument.load(path)
    for key, value in values.items():
        doc.set(key, value)
    doc.save(path, mode=mode)


class EnvFileSink:
    """Public env vars go to one dotenv file, secret ones to a 0600 file."""

    SECRETS_MODE = 0o600

    def __init__(self, env_path: str | Path, secrets_path: str | Path):
        self.env_path = Path(env_path)
        self.secrets_path = Path(secrets_path)

    def push(self, env: Mapping[str, str], secrets: Mapping[str, str]) -> None:
        upsert_env_file(self.env_path, env)
        upsert_env_file(self.secrets_path, secrets, mode=self.SECRETS_MODE)
        logger.info(
            f"Flushed {len(env)} env vars to {self.env_path} "
            f"and {len(secrets)} secrets to {self.secrets_path}"
        )


def _key_of(raw: str) -> str | None:
    stripped = raw.strip()
    if not stripped or stripped.startswith("#") or "=" not in stripped:
        return None
    key = raw.split("=", 1)[0].strip()
    return key or None


def _quote(value: str) -> str:
    if value and not _NEEDS_QUOTES.intersection(value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _unquote(value: str) -> str:
    raw = value.strip()
    if len(raw) < 2 or raw[0] != raw[-1] or raw[0] not in "\"'":
        return raw
    inner = raw[1:-1]
    if raw[0] == '"':
        inner = inner.replace('\\"', '"').replace("\\\\", "\\")
    return inner
