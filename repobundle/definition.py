"""
Dependency definition built from a manifest and its lock file.

The manifest (requirements.in) declares loose constraints; the lock
(requirements.txt) pins every resolved package to an exact version.
Both use pip's requirements-file syntax.
"""
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Tuple

from packaging.requirements import InvalidRequirement, Requirement
from packaging.utils import canonicalize_name


logger = logging.getLogger(__name__)

_COMMENT_RE = re.compile(r'(^|\s+)#.*$')
_INLINE_OPTION_RE = re.compile(r'\s+--?[a-zA-Z].*$')


class DefinitionError(Exception):
    """Raised when a manifest and its lock disagree."""
    pass


class LockfileError(DefinitionError):
    """Raised when a lock file entry is not an exact pin."""
    pass


def read_requirements_file(path: Path) -> Tuple[List[Requirement], List[str]]:
    """
    Parse a requirements file.

    Args:
        path: Requirements file to read

    Returns:
        Tuple of (requirements, option_lines). Option lines such as
        ``--index-url`` or ``-e .`` are returned verbatim and left to pip.

    Raises:
        FileNotFoundError: If the file doesn't exist
        DefinitionError: If a line is not a valid requirement
    """
    text = path.read_text()
    # Join backslash continuations before splitting into logical lines
    text = text.replace('\\\r\n', ' ').replace('\\\n', ' ')

    requirements = []
    options = []
    for lineno, raw_line in enumerate(text.splitlines(), start=1):
        line = _COMMENT_RE.sub('', raw_line).strip()
        if not line:
            continue

        if line.startswith('-'):
            options.append(line)
            continue

        # Per-requirement options (--hash=...) trail the specifier
        line = _INLINE_OPTION_RE.sub('', line)

        try:
            requirements.append(Requirement(line))
        except InvalidRequirement as e:
            raise DefinitionError(f"{path}:{lineno}: invalid requirement {line!r}: {e}") from e

    return requirements, options


def _applies(requirement: Requirement) -> bool:
    return requirement.marker is None or requirement.marker.evaluate()


@dataclass
class DependencyDefinition:
    """A manifest's requirements together with the versions its lock pins."""
    manifest_path: Path
    lock_path: Path
    dependencies: List[Requirement] = field(default_factory=list)
    locked: Dict[str, str] = field(default_factory=dict)
    direct_references: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def build(cls, manifest_path: Path, lock_path: Path) -> 'DependencyDefinition':
        """
        Read manifest and lock and check they describe the same graph.

        Raises:
            FileNotFoundError: If either file doesn't exist
            LockfileError: If a lock entry is neither pinned with ``==`` nor
                a direct reference (``name @ url``)
            DefinitionError: If a manifest requirement is missing from the
                lock or its pinned version violates the manifest constraint
        """
        manifest_path = Path(manifest_path)
        lock_path = Path(lock_path)

        dependencies, _ = read_requirements_file(manifest_path)
        locked_requirements, _ = read_requirements_file(lock_path)

        locked = {}
        direct_references = {}
        for req in locked_requirements:
            if not _applies(req):
                continue
            if req.url:
                # pip-compile locks URL dependencies by reference, not version
                direct_references[canonicalize_name(req.name)] = req.url
                continue
            pins = [spec for spec in req.specifier if spec.operator in ('==', '===')]
            if len(pins) != 1 or len(req.specifier) != 1 or '*' in pins[0].version:
                raise LockfileError(f"{lock_path}: {req} is not pinned to an exact version")
            locked[canonicalize_name(req.name)] = pins[0].version

        definition = cls(
            manifest_path=manifest_path,
            lock_path=lock_path,
            dependencies=dependencies,
            locked=locked,
            direct_references=direct_references
        )
        definition.check_consistency()

        logger.debug(f"Definition from {manifest_path}: {len(dependencies)} declared, {len(locked)} locked")
        return definition

    def check_consistency(self) -> None:
        """Fail if any applicable manifest requirement is unlocked or mis-pinned."""
        missing = []
        conflicts = []

        for req in self.dependencies:
            if not _applies(req):
                continue
            name = canonicalize_name(req.name)
            if name in self.direct_references:
                continue
            if name not in self.locked:
                missing.append(req.name)
            elif not req.specifier.contains(self.locked[name], prereleases=True):
                conflicts.append(f"{req.name}=={self.locked[name]} (manifest requires {req.specifier})")

        problems = []
        if missing:
            problems.append(f"not locked: {', '.join(missing)}")
        if conflicts:
            problems.append(f"lock violates manifest: {', '.join(conflicts)}")

        if problems:
            raise DefinitionError(
                f"{self.lock_path} is out of date with {self.manifest_path}; " + "; ".join(problems)
            )

    def package_names(self) -> List[str]:
        """Canonical names of every locked package, sorted."""
        return sorted(set(self.locked) | set(self.direct_references))
