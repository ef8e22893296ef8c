"""Idempotent host configuration changes.

A file change is a pure function from the current file content to the
desired content. Rendering an already-satisfied file must return it
unchanged; the applier relies on that to detect the no-op case.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import ClassVar


@dataclass(frozen=True, kw_only=True)
class ConfigChange:
    """A named mutation of host configuration.

    ``optional`` changes whose target does not exist are skipped by callers
    instead of failing the whole plan.
    """

    name: str
    optional: bool = False

    requires_restart: ClassVar[bool] = False
    reload_unit: ClassVar[str | None] = None

    @property
    def target(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True, kw_only=True)
class FileChange(ConfigChange):
    path: str

    # Whether the applier may create the file when it does not exist yet
    create: ClassVar[bool] = False

    @property
    def target(self) -> str:
        return self.path

    def render(self, current: str) -> str:
        raise NotImplementedError


def _is_active(line: str) -> bool:
    stripped = line.lstrip()
    return bool(stripped) and not stripped.startswith(("#", ";"))


def _join(lines: list[str], trailing_newline: bool) -> str:
    text = "\n".join(lines)
    return text + "\n" if trailing_newline or not text else text


@dataclass(frozen=True, kw_only=True)
class KernelCmdlineParams(FileChange):
    """Append boot parameters to a single-line kernel command line file."""

    params: tuple[str, ...]

    requires_restart: ClassVar[bool] = True

    def render(self, current: str) -> str:
        tokens = current.split()
        missing = [p for p in self.params if p not in tokens]
        if not missing:
            return current
        return " ".join(tokens + missing) + "\n"


@dataclass(frozen=True, kw_only=True)
class IniKeys(FileChange):
    """Pin ``key=value`` pairs inside one ``[section]`` of an INI-style file.

    Active assignments of the same keys elsewhere in the file are removed.
    """

    section: str
    values: Mapping[str, str]

    def _satisfied(self, lines: list[str]) -> bool:
        found: dict[str, list[tuple[str, str]]] = {k: [] for k in self.values}
        section = None
        for line in lines:
            stripped = line.strip()
            if stripped.startswith("[") and stripped.endswith("]"):
                section = stripped[1:-1]
                continue
            if not _is_active(line):
                continue
            key = stripped.split("=", 1)[0].strip()
            if key in found:
                found[key].append((section, stripped))
        return all(
            found[key] == [(self.section, f"{key}={value}")]
            for key, value in self.values.items()
        )

    def render(self, current: str) -> str:
        lines = current.splitlines()
        if self._satisfied(lines):
            return current

        def assigns_key(line: str) -> bool:
            if not _is_active(line):
                return False
            return line.strip().split("=", 1)[0].strip() in self.values

        kept = [line for line in lines if not assigns_key(line)]
        wanted = [f"{key}={value}" for key, value in self.values.items()]
        header = f"[{self.section}]"
        for index, line in enumerate(kept):
            if line.strip() == header:
                kept[index + 1 : index + 1] = wanted
                break
        else:
            if kept and kept[-1].strip():
                kept.append("")
            kept += [header, *wanted]
        return _join(kept, trailing_newline=True)


@dataclass(frozen=True, kw_only=True)
class KeyValueLine(FileChange):
    """Ensure a shell-style ``KEY=value`` assignment."""

    key: str
    value: str

    def render(self, current: str) -> str:
        lines = current.splitlines()
        desired = f"{self.key}={self.value}"
        matches = [
            i
            for i, line in enumerate(lines)
            if _is_active(line) and line.strip().startswith(f"{self.key}=")
        ]
        if len(matches) == 1 and lines[matches[0]].strip() == desired:
            return current
        if not matches:
            return _join(lines + [desired], trailing_newline=True)
        first = matches[0]
        result = [
            desired if i == first else line
            for i, line in enumerate(lines)
            if i == first or i not in matches
        ]
        return _join(result, trailing_newline=current.endswith("\n"))


@dataclass(frozen=True, kw_only=True)
class CommentOutLines(FileChange):
    """Comment out every active line matching ``pattern``."""

    pattern: str

    def render(self, current: str) -> str:
        regex = re.compile(self.pattern)
        lines = current.splitlines()
        if not any(_is_active(l) and regex.search(l) for l in lines):
            return current
        result = [
            f"# {line}" if _is_active(line) and regex.search(line) else line
            for line in lines
        ]
        return _join(result, trailing_newline=current.endswith("\n"))


@dataclass(frozen=True, kw_only=True)
class DropInFile(FileChange):
    """Own a whole drop-in file (``/etc/*.d/``)."""

    content: str

    create: ClassVar[bool] = True

    def render(self, current: str) -> str:
        return self.content


@dataclass(frozen=True, kw_only=True)
class JournaldLimits(IniKeys):
    """journald size caps; live once systemd-journald restarts."""

    reload_unit: ClassVar[str | None] = "systemd-journald"


@dataclass(frozen=True, kw_only=True)
class ServiceEnablement(ConfigChange):
    """Whether a systemd unit starts at boot."""

    unit: str
    enabled: bool

    @property
    def target(self) -> str:
        return f"{self.unit}.service"
