"""
Client for a PyPI-compatible package index.

Looks up the latest release of a project through the JSON API and downloads
its distribution file.
"""
import hashlib
import logging
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional

import requests
from packaging.tags import Tag, sys_tags
from packaging.utils import InvalidWheelFilename, parse_wheel_filename
from pydantic import BaseModel, Field

from repobundle.settings import ToolSettings, load_settings


logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class PackageNotFoundError(Exception):
    """Raised when the index has no installable release of a project."""
    pass


class DigestMismatchError(Exception):
    """Raised when a downloaded file doesn't match its published digest."""
    pass


class ReleaseFile(BaseModel):
    """One distribution file of a release, as published by the index."""
    filename: str
    url: str
    packagetype: str = Field(..., description="bdist_wheel or sdist")
    digests: Dict[str, str] = Field(default_factory=dict)
    yanked: bool = False

    @property
    def is_wheel(self) -> bool:
        return self.packagetype == "bdist_wheel"

    @property
    def is_universal_wheel(self) -> bool:
        return self.is_wheel and self.filename.endswith("-none-any.whl")


class ProjectInfo(BaseModel):
    name: str
    version: str


class ProjectRelease(BaseModel):
    """Response of ``GET /pypi/<name>/json``."""
    info: ProjectInfo
    urls: List[ReleaseFile] = Field(default_factory=list)


class ReleaseSpec(BaseModel):
    """The release chosen for installation: project, version and file."""
    name: str
    version: str
    file: ReleaseFile


def wheel_is_supported(filename: str, supported_tags: FrozenSet[Tag]) -> bool:
    """True if any tag of the wheel filename is installable here."""
    try:
        _, _, _, tags = parse_wheel_filename(filename)
    except InvalidWheelFilename:
        return False
    return not tags.isdisjoint(supported_tags)


def select_release_file(files: List[ReleaseFile], supported_tags: Optional[Iterable[Tag]] = None) -> Optional[ReleaseFile]:
    """
    Choose the file to install from a release.

    Prefers a universal wheel, then a wheel whose tags match this
    interpreter and platform, then an sdist. Yanked files and wheels built
    for other platforms are never chosen.
    """
    supported = frozenset(sys_tags() if supported_tags is None else supported_tags)
    candidates = [
        f for f in files
        if not f.yanked and (not f.is_wheel or wheel_is_supported(f.filename, supported))
    ]

    for predicate in (
        lambda f: f.is_universal_wheel,
        lambda f: f.is_wheel,
        lambda f: f.packagetype == "sdist",
    ):
        for f in candidates:
            if predicate(f):
                return f

    return None


class PackageIndexClient:
    """Fetches release metadata and archives from the package index."""

    def __init__(self, settings: Optional[ToolSettings] = None, session: Optional[requests.Session] = None):
        self.settings = settings or load_settings()
        self.session = session or requests.Session()
        self.session.headers.update({'Accept': 'application/json'})

    def latest_release(self, name: str) -> ReleaseSpec:
        """
        Look up the latest release of a project.

        Raises:
            PackageNotFoundError: If the project is unknown or has no
                installable file
            requests.HTTPError: For any other unsuccessful response
        """
        url = f"{self.settings.index_url}/pypi/{name}/json"
        logger.debug(f"Fetching release metadata: {url}")

        response = self.session.get(url, timeout=self.settings.http_timeout)
        if response.status_code == 404:
            raise PackageNotFoundError(f"Package {name!r} not found on {self.settings.index_url}")
        response.raise_for_status()

        release = ProjectRelease(**response.json())
        chosen = select_release_file(release.urls)
        if chosen is None:
            raise PackageNotFoundError(
                f"No installable file for {release.info.name} {release.info.version} on {self.settings.index_url}"
            )

        return ReleaseSpec(name=release.info.name, version=release.info.version, file=chosen)

    def download(self, release: ReleaseSpec, dest_dir: Path) -> Path:
        """
        Download a release file into dest_dir.

        Returns:
            Path of the downloaded file

        Raises:
            DigestMismatchError: If the sha256 digest doesn't match
            requests.HTTPError: If the download fails
        """
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        dest_path = dest_dir / release.file.filename

        logger.info(f"Downloading {release.file.filename} from {release.file.url}")

        sha256 = hashlib.sha256()
        with self.session.get(release.file.url, stream=True, timeout=self.settings.http_timeout) as response:
            response.raise_for_status()
            try:
                with open(dest_path, 'wb') as f:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        sha256.update(chunk)
                        f.write(chunk)
            except Exception:
                # Never leave a truncated archive behind
                if dest_path.exists():
                    dest_path.unlink()
                raise

        expected = release.file.digests.get('sha256')
        if expected and sha256.hexdigest() != expected:
            dest_path.unlink()
            raise DigestMismatchError(
                f"sha256 mismatch for {release.file.filename}: expected {expected}, got {sha256.hexdigest()}"
            )

        return dest_path
