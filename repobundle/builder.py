"""
Repository builder.

Drives pip to materialize a manifest's locked dependency set into a target
directory, then installs pip itself alongside so the produced repository can
bootstrap further installs without a system-wide pip.

Resolution and installation are pip's job; errors from pip, the index and the
filesystem propagate to the caller untouched.
"""
import logging
import os
import subprocess
import sys
import tempfile
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from repobundle.definition import DependencyDefinition
from repobundle.index import PackageIndexClient
from repobundle.settings import ToolSettings, load_settings, reset_settings


logger = logging.getLogger(__name__)


class BuildStage(str, Enum):
    """Stages of a single build, in order."""
    UNCONFIGURED = "unconfigured"
    ENVIRONMENT_CONFIGURED = "environment_configured"
    DEPENDENCIES_RESOLVED = "dependencies_resolved"
    PACKAGES_INSTALLED = "packages_installed"
    BOOTSTRAP_INSTALLED = "bootstrap_installed"
    DONE = "done"


def runtime_engine() -> str:
    """Name of the running interpreter implementation (cpython, pypy, ...)."""
    return sys.implementation.name


def runtime_version() -> str:
    """Major.minor version of the running interpreter."""
    return f"{sys.version_info.major}.{sys.version_info.minor}"


class PipRunner:
    """Runs pip in a child process."""

    def __init__(self, settings: ToolSettings):
        self.settings = settings

    def run(self, args: List[str], env: Dict[str, str], cwd: Optional[Path] = None) -> subprocess.CompletedProcess:
        """
        Run pip with the given arguments.

        Raises:
            subprocess.CalledProcessError: If pip exits non-zero
        """
        command = self.settings.pip_command() + list(args)
        logger.debug(f"Running: {' '.join(command)}")

        result = subprocess.run(
            command,
            cwd=cwd,
            env=env,
            capture_output=True,
            text=True,
            check=True
        )

        if result.stdout:
            logger.debug(result.stdout.rstrip())

        return result


class RepositoryBuilder:
    """
    Materializes a manifest plus the bootstrap package into a target directory.

    Each build gets its own pip configuration directory, so repeated builds in
    one process never see each other's configuration. Process-wide settings
    are memoized; call reset() to re-read them.
    """

    def __init__(
        self,
        settings: Optional[ToolSettings] = None,
        index_client: Optional[PackageIndexClient] = None,
        runner: Optional[PipRunner] = None
    ):
        self.settings = settings or load_settings()
        self.index_client = index_client or PackageIndexClient(self.settings)
        self.runner = runner or PipRunner(self.settings)
        self.stage = BuildStage.UNCONFIGURED
        self.environment: Optional[Dict[str, str]] = None

    @classmethod
    def reset(cls) -> None:
        """Forget memoized process-wide settings."""
        reset_settings()

    @staticmethod
    def install_location(target_dir) -> str:
        """Directory under target_dir that packages for this interpreter land in."""
        return f"{target_dir}/{runtime_engine()}/{runtime_version()}"

    def build(self, target_dir, manifest_path, lock_path, work_dir=None) -> str:
        """
        Install the locked dependency set and the bootstrap package.

        Args:
            target_dir: Repository root; created if missing
            manifest_path: Requirements file with the declared dependencies
            lock_path: Fully pinned requirements file for the manifest
            work_dir: Directory for pip's configuration during this build
                (default: a temporary directory removed afterwards)

        Returns:
            Install location, ``<target_dir>/<engine>/<version>``
        """
        if work_dir is None:
            with tempfile.TemporaryDirectory(prefix="repobundle-work-") as tmp:
                try:
                    return self._build(target_dir, manifest_path, lock_path, Path(tmp))
                finally:
                    # The configuration it points at is gone with the work dir
                    self.environment = None

        return self._build(target_dir, manifest_path, lock_path, Path(work_dir))

    def _build(self, target_dir, manifest_path, lock_path, work_dir: Path) -> str:
        self.stage = BuildStage.UNCONFIGURED

        manifest = Path(manifest_path).expanduser().resolve()
        lock = Path(lock_path).expanduser().resolve()

        self.environment = self.configure_environment(work_dir.resolve(), manifest)
        self._advance(BuildStage.ENVIRONMENT_CONFIGURED)

        definition = DependencyDefinition.build(manifest, lock)
        self._advance(BuildStage.DEPENDENCIES_RESOLVED)

        location = self.install_location(target_dir)
        # pip runs from the manifest directory, so it needs the absolute form
        install_dir = Path(location).resolve()
        self._prepare_location(install_dir)

        logger.info(f"Installing {len(definition.locked)} locked packages into {location}")
        self.runner.run(
            [
                "install",
                "--target", str(install_dir),
                "--requirement", str(manifest),
                "--constraint", str(lock),
            ],
            env=self.environment,
            cwd=manifest.parent
        )
        self._advance(BuildStage.PACKAGES_INSTALLED)

        self.install_package(install_dir, self.settings.bootstrap_package)
        self._advance(BuildStage.BOOTSTRAP_INSTALLED)

        self._advance(BuildStage.DONE)
        return location

    def install_package(self, install_dir, package_name: str) -> Path:
        """
        Download the latest release of a package and force-install it.

        The archive is kept under ``<install_dir>/cache``.

        Returns:
            Path of the downloaded archive
        """
        install_dir = Path(install_dir).resolve()

        release = self.index_client.latest_release(package_name)
        logger.info(f"Installing {release.name} {release.version} into {install_dir}")

        archive = self.index_client.download(release, install_dir / "cache")

        env = self.environment if self.environment is not None else self._base_environment()
        self.runner.run(
            [
                "install",
                "--target", str(install_dir),
                "--no-deps",
                "--upgrade",
                "--force-reinstall",
                str(archive),
            ],
            env=env
        )

        return archive

    def configure_environment(self, work_dir: Path, manifest: Path) -> Dict[str, str]:
        """
        Build the environment pip runs with for one build.

        Writes a pip.conf into work_dir and points pip at it, away from any
        user-level configuration.
        """
        work_dir.mkdir(parents=True, exist_ok=True)

        config_file = work_dir / "pip.conf"
        config_file.write_text(
            "[global]\n"
            f"index-url = {self.settings.simple_index_url}\n"
        )

        env = self._base_environment()
        env.update({
            'PIP_CONFIG_FILE': str(config_file),
            'XDG_CONFIG_HOME': str(work_dir),
            'PIP_CACHE_DIR': str(work_dir / "cache"),
            'REPOBUNDLE_MANIFEST': str(manifest),
        })
        return env

    def _base_environment(self) -> Dict[str, str]:
        env = dict(os.environ)
        env.update({
            'PIP_NO_INPUT': "1",
            'PIP_DISABLE_PIP_VERSION_CHECK': "1",
        })
        return env

    def _prepare_location(self, location: Path) -> None:
        """Create the install location, failing early if it isn't writable."""
        location.mkdir(parents=True, exist_ok=True)
        if not os.access(location, os.W_OK):
            raise PermissionError(f"Install location is not writable: {location}")

    def _advance(self, stage: BuildStage) -> None:
        logger.debug(f"Build stage: {self.stage.value} -> {stage.value}")
        self.stage = stage
