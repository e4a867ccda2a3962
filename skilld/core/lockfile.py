"""Project-local lockfile (``skilld-lock.yaml``).

Records, per installed skill, which upstream package(s) and cache version
produced it. The on-disk grammar is a fixed two-level YAML subset, read and
written by a small codec over an explicit schema rather than a YAML library
so existing files round-trip unchanged.
"""

import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from skilld.core.yaml_lite import yaml_escape, yaml_parse_kv

LOCK_FILENAME = "skilld-lock.yaml"

# On-disk key -> SkillInfo attribute, in emission order
FIELD_ORDER: List[Tuple[str, str]] = [
    ("packageName", "package_name"),
    ("version", "version"),
    ("packages", "packages"),
    ("repo", "repo"),
    ("source", "source"),
    ("syncedAt", "synced_at"),
    ("generator", "generator"),
    ("path", "path"),
    ("ref", "ref"),
    ("commit", "commit"),
]

_KEY_TO_ATTR = dict(FIELD_ORDER)

_SKILL_HEADER_RE = re.compile(r"^ {2}(\S+):\s*$")
_FRONTMATTER_RE = re.compile(r"^---\r?\n([\s\S]*?)\r?\n---")


@dataclass
class SkillInfo:
    """Lockfile record for one installed skill."""

    package_name: Optional[str] = None
    version: Optional[str] = None
    packages: Optional[str] = None
    repo: Optional[str] = None
    source: Optional[str] = None
    synced_at: Optional[str] = None
    generator: Optional[str] = None
    path: Optional[str] = None
    ref: Optional[str] = None
    commit: Optional[str] = None

    def package_list(self) -> List[Tuple[str, str]]:
        """All (name, version) pairs attributed to this skill."""
        if self.packages:
            return parse_packages(self.packages)
        if self.package_name:
            return [(self.package_name, self.version or "")]
        return []


@dataclass
class SkilldLock:
    skills: Dict[str, SkillInfo] = field(default_factory=dict)


def parse_packages(packages: Optional[str]) -> List[Tuple[str, str]]:
    """Parse a ``"a@1.0, @scope/b@2.0"`` string into (name, version) pairs.

    The last ``@`` separates name from version so scoped names survive.
    """
    if not packages:
        return []
    result = []
    for part in packages.split(","):
        entry = part.strip()
        if not entry:
            continue
        at = entry.rfind("@")
        if at <= 0:
            result.append((entry, ""))
        else:
            result.append((entry[:at], entry[at + 1:]))
    return result


def serialize_packages(pairs: Iterable[Tuple[str, str]]) -> str:
    return ", ".join(f"{name}@{version}" for name, version in pairs)


def _lock_path(skills_dir: Path) -> Path:
    return Path(skills_dir) / LOCK_FILENAME


def parse_lock(content: str) -> SkilldLock:
    """Parse lockfile text. Unknown keys and malformed lines are ignored."""
    skills: Dict[str, SkillInfo] = {}
    current: Optional[SkillInfo] = None

    for line in content.splitlines():
        header = _SKILL_HEADER_RE.match(line)
        if header:
            current = SkillInfo()
            skills[header.group(1)] = current
            continue
        if current is None or not line.startswith("    "):
            continue
        kv = yaml_parse_kv(line)
        if not kv:
            continue
        key, value = kv
        attr = _KEY_TO_ATTR.get(key)
        if attr and value:
            setattr(current, attr, value)

    return SkilldLock(skills=skills)


def serialize_lock(lock: SkilldLock) -> str:
    lines = ["skills:"]
    for name, info in lock.skills.items():
        lines.append(f"  {name}:")
        for key, attr in FIELD_ORDER:
            value = getattr(info, attr)
            if value:
                lines.append(f"    {key}: {yaml_escape(str(value))}")
    return "\n".join(lines) + "\n"


def read_lock(skills_dir: Path) -> Optional[SkilldLock]:
    """Read ``skilld-lock.yaml`` from a skills directory, None if absent."""
    path = _lock_path(skills_dir)
    if not path.exists():
        return None
    return parse_lock(path.read_text(encoding="utf-8"))


def _save(skills_dir: Path, lock: SkilldLock) -> None:
    path = _lock_path(skills_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(serialize_lock(lock), encoding="utf-8")


def _upsert(pairs: List[Tuple[str, str]], name: str, version: str) -> List[Tuple[str, str]]:
    out = list(pairs)
    for i, (existing_name, _) in enumerate(out):
        if existing_name == name:
            out[i] = (name, version)
            return out
    out.append((name, version))
    return out


def merge_skill_info(existing: Optional[SkillInfo], incoming: SkillInfo) -> SkillInfo:
    """Combine an incoming write with the record already on disk.

    A different ``package_name`` means another package is being bundled
    into the same skill: it is upserted into ``packages`` while the primary
    identity and unset descriptive fields are kept. The same name overwrites
    the record but carries the accumulated package list along.
    """
    if existing is None or not existing.package_name or not incoming.package_name:
        return incoming

    pairs = existing.package_list()
    pairs = _upsert(pairs, incoming.package_name, incoming.version or "")

    if existing.package_name != incoming.package_name:
        merged = replace(
            incoming,
            package_name=existing.package_name,
            version=existing.version,
            repo=incoming.repo or existing.repo,
            source=incoming.source or existing.source,
            generator=incoming.generator or existing.generator,
            path=incoming.path or existing.path,
            ref=incoming.ref or existing.ref,
            commit=incoming.commit or existing.commit,
        )
    else:
        merged = replace(incoming)

    merged.packages = serialize_packages(pairs) if len(pairs) > 1 else None
    return merged


def write_lock(skills_dir: Path, skill_name: str, info: SkillInfo) -> SkillInfo:
    """Write one skill record, merging with any existing record.

    The whole file is rewritten on every call.

    Returns:
        The record as persisted
    """
    lock = read_lock(skills_dir) or SkilldLock()
    merged = merge_skill_info(lock.skills.get(skill_name), info)
    lock.skills[skill_name] = merged
    _save(skills_dir, lock)
    return merged


def remove_lock_entry(skills_dir: Path, skill_name: str) -> bool:
    """Delete a skill record; delete the lockfile itself when it empties.

    Returns:
        True if a record was removed
    """
    lock = read_lock(skills_dir)
    if lock is None or skill_name not in lock.skills:
        return False

    del lock.skills[skill_name]

    if not lock.skills:
        _lock_path(skills_dir).unlink()
        return True

    _save(skills_dir, lock)
    return True


def merge_locks(locks: Iterable[SkilldLock]) -> SkilldLock:
    """Reconcile several lockfiles: newest ``synced_at`` wins per skill."""
    merged: Dict[str, SkillInfo] = {}
    for lock in locks:
        for name, info in lock.skills.items():
            current = merged.get(name)
            if current is None or (info.synced_at or "") > (current.synced_at or ""):
                merged[name] = info
    return SkilldLock(skills=merged)


def sync_lockfiles_to_dirs(lock: SkilldLock, skills_dirs: Iterable[Path]) -> List[Path]:
    """Mirror a merged lock into every skills directory that exists.

    Returns:
        Lockfile paths written
    """
    written = []
    for skills_dir in skills_dirs:
        skills_dir = Path(skills_dir)
        if not skills_dir.is_dir():
            continue
        _save(skills_dir, lock)
        written.append(_lock_path(skills_dir))
    return written


def parse_skill_frontmatter(skill_path: Path) -> Optional[SkillInfo]:
    """Read lockfile fields from a SKILL.md frontmatter block."""
    skill_path = Path(skill_path)
    if not skill_path.exists():
        return None
    match = _FRONTMATTER_RE.match(skill_path.read_text(encoding="utf-8"))
    if not match:
        return None

    info = SkillInfo()
    for line in match.group(1).splitlines():
        kv = yaml_parse_kv(line)
        if not kv:
            continue
        attr = _KEY_TO_ATTR.get(kv[0])
        if attr and kv[1]:
            setattr(info, attr, kv[1])
    return info


def recover_lock(skills_dir: Path) -> SkilldLock:
    """Lockfile of ``skills_dir`` plus records rebuilt from SKILL.md files.

    Skill directories missing from the lockfile (e.g. copied in by hand)
    are recovered from their SKILL.md frontmatter.
    """
    skills_dir = Path(skills_dir)
    lock = read_lock(skills_dir) or SkilldLock()
    if not skills_dir.is_dir():
        return lock

    for entry in sorted(skills_dir.iterdir()):
        if not entry.is_dir() or entry.name in lock.skills:
            continue
        info = parse_skill_frontmatter(entry / "SKILL.md")
        if info and info.package_name:
            lock.skills[entry.name] = info
    return lock
