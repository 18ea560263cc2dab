"""
Packages a project's dependency repository into a zip archive.

Builds the repository in temporary directories, prunes what isn't needed at
runtime, and writes ``<name>-<version>-pkgrepo.zip`` with the manifest stored
under META-INF/.
"""
import logging
import os
import shutil
import tempfile
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Optional

from repobundle.builder import RepositoryBuilder


logger = logging.getLogger(__name__)

MANIFEST_NAME = "requirements.in"
LOCK_NAME = "requirements.txt"

# Directories dropped from the install location before archiving
PRUNED_DIRS = ("bin", "cache", "doc")


class PackagingError(Exception):
    """Raised when the repository archive can't be produced."""
    pass


def is_symlink(path: Path) -> bool:
    """True for symlinks and for entries whose parent resolves elsewhere."""
    try:
        if path.is_symlink():
            return True
        return path.resolve().parent != path.parent.resolve()
    except OSError:
        return True


class RepositoryPackager:
    """Builds a project's dependency repository and archives it."""

    def __init__(
        self,
        project_dir: Path,
        output_dir: Path,
        name: str,
        version: str,
        builder: Optional[RepositoryBuilder] = None
    ):
        self.project_dir = Path(project_dir)
        self.output_dir = Path(output_dir)
        self.name = name
        self.version = version
        self.builder = builder or RepositoryBuilder()

    @property
    def archive_path(self) -> Path:
        return self.output_dir / f"{self.name}-{self.version}-pkgrepo.zip"

    def package(self) -> Path:
        """
        Build the repository and write the archive.

        Returns:
            Path of the written archive

        Raises:
            PackagingError: If the manifest or lock is missing, the build
                fails, or the archive can't be written
        """
        manifest = self.locate_in_project_root(MANIFEST_NAME)
        lock = self.locate_in_project_root(LOCK_NAME)

        work_dir = self._create_temporary_directory()
        repo_dir = self._create_temporary_directory()

        try:
            try:
                location = self.builder.build(repo_dir, manifest, lock, work_dir=work_dir)
            except Exception as e:
                raise PackagingError(
                    "Package repository was not properly constructed. Please check the output for errors. "
                    f"Try running pip install manually to verify the contents of the manifest. [{manifest}]"
                ) from e

            location = Path(location)
            for dirname in PRUNED_DIRS:
                self._delete_ignoring_errors(location / dirname)

            return self.write_archive(location, manifest)
        finally:
            self._delete_ignoring_errors(work_dir)
            self._delete_ignoring_errors(repo_dir)

    def locate_in_project_root(self, file_name: str) -> Path:
        """Find a readable file in the project root."""
        project_root = self._project_root()
        path = project_root / file_name

        if not (path.is_file() and os.access(path, os.R_OK)):
            raise PackagingError(
                f"No {file_name} was found in the root of your project. "
                f"Please ensure a {file_name} exists, is readable, and is in the root of your project structure. "
                f"The project root appears to be at [{project_root}]."
            )

        return path

    def write_archive(self, repository_dir: Path, manifest: Path) -> Path:
        """
        Zip repository_dir, plus the manifest under META-INF/.

        Symlinked entries are skipped.
        """
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            archive_path = self.archive_path
            logger.info(f"Building package repository archive: {archive_path.name}")

            with zipfile.ZipFile(archive_path, 'w', compression=zipfile.ZIP_DEFLATED) as zf:
                self._add_tree(zf, repository_dir, "")
                self._add_entry(zf, manifest, "META-INF/")
        except OSError as e:
            raise PackagingError(
                "Error trying to create the archive containing the package repository, "
                f"please ensure the output directory [{self.output_dir}] exists or is creatable, "
                "is not full, and is writeable."
            ) from e

        return archive_path

    def _add_tree(self, zf: zipfile.ZipFile, directory: Path, prefix: str) -> None:
        for child in sorted(directory.iterdir()):
            if is_symlink(child):
                logger.debug(f"Skipping symlink [{child}]")
                continue

            self._add_entry(zf, child, prefix)

            if child.is_dir():
                self._add_tree(zf, child, f"{prefix}{child.name}/")

    def _add_entry(self, zf: zipfile.ZipFile, path: Path, prefix: str) -> None:
        entry_name = f"{prefix}{path.name}" + ("/" if path.is_dir() else "")
        logger.debug(f"Adding entry [{entry_name}] to the package repository archive")

        info = zipfile.ZipInfo(entry_name, date_time=self._zip_timestamp(path))
        if path.is_dir():
            info.external_attr = (0o40755 << 16) | 0x10
            zf.writestr(info, b"")
        else:
            info.external_attr = (path.stat().st_mode & 0xFFFF) << 16
            info.compress_type = zipfile.ZIP_DEFLATED
            with open(path, 'rb') as src, zf.open(info, 'w') as dst:
                shutil.copyfileobj(src, dst)

    @staticmethod
    def _zip_timestamp(path: Path) -> tuple:
        mtime = datetime.fromtimestamp(path.stat().st_mtime)
        # Zip can't represent dates before 1980
        if mtime.year < 1980:
            mtime = datetime(1980, 1, 1)
        return mtime.timetuple()[:6]

    def _project_root(self) -> Path:
        try:
            return self.project_dir.resolve(strict=True)
        except OSError as e:
            raise PackagingError(
                f"Error trying to locate the project root directory [{self.project_dir}]."
            ) from e

    def _create_temporary_directory(self) -> Path:
        try:
            return Path(tempfile.mkdtemp(prefix="repobundle-")).resolve()
        except OSError as e:
            raise PackagingError(
                "Error trying to create a temporary directory for the packages, "
                f"please ensure the temporary directory [{tempfile.gettempdir()}] isn't full and is writeable."
            ) from e

    def _delete_ignoring_errors(self, path: Path) -> None:
        if not path.exists():
            return
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning(f"Failed to delete directory recursively: {path}: {e}")
