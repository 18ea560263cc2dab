"""
Pytest configuration for unit tests.

Isolates tests from the caller's repobundle environment and provides fakes
for pip and the package index so no test touches the network.
"""
import pytest
from pathlib import Path

from repobundle.builder import RepositoryBuilder
from repobundle.index import ReleaseFile, ReleaseSpec
from repobundle.settings import ToolSettings, reset_settings


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Drop REPOBUNDLE_* variables and memoized settings around each test."""
    for name in ("REPOBUNDLE_CONFIG", "REPOBUNDLE_INDEX_URL", "REPOBUNDLE_BOOTSTRAP_PACKAGE",
                 "REPOBUNDLE_PYTHON", "REPOBUNDLE_HTTP_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()


class FakeRunner:
    """Records pip invocations and creates the package dirs they would."""

    def __init__(self, fail_on=None, error=None):
        self.calls = []
        self.fail_on = fail_on
        self.error = error

    def run(self, args, env, cwd=None):
        self.calls.append({'args': list(args), 'env': dict(env), 'cwd': cwd})

        if self.fail_on is not None and self.fail_on(args):
            raise self.error

        target = Path(args[args.index("--target") + 1])
        if "--requirement" in args:
            lock = Path(args[args.index("--constraint") + 1])
            for line in lock.read_text().splitlines():
                if "==" in line:
                    name, version = line.split("==")
                    (target / f"{name.strip()}-{version.strip()}.dist-info").mkdir(parents=True, exist_ok=True)
        else:
            archive = Path(args[-1])
            (target / archive.name.split("-")[0]).mkdir(parents=True, exist_ok=True)


class FakeIndexClient:
    """Serves a single release of any requested package."""

    def __init__(self, version="24.0", error=None):
        self.version = version
        self.error = error
        self.lookups = []

    def latest_release(self, name):
        self.lookups.append(name)
        if self.error is not None:
            raise self.error
        filename = f"{name}-{self.version}-py3-none-any.whl"
        return ReleaseSpec(
            name=name,
            version=self.version,
            file=ReleaseFile(
                filename=filename,
                url=f"https://files.example.org/{filename}",
                packagetype="bdist_wheel",
            )
        )

    def download(self, release, dest_dir):
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        path = dest_dir / release.file.filename
        path.write_bytes(b"wheel")
        return path


@pytest.fixture
def settings():
    return ToolSettings(index_url="https://index.example.org", python="/usr/bin/python3")


@pytest.fixture
def make_runner():
    return FakeRunner


@pytest.fixture
def make_index():
    return FakeIndexClient


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def fake_index():
    return FakeIndexClient()


@pytest.fixture
def builder(settings, fake_index, fake_runner):
    return RepositoryBuilder(settings=settings, index_client=fake_index, runner=fake_runner)


@pytest.fixture
def project(tmp_path):
    """A project root with a consistent manifest and lock."""
    root = tmp_path / "project"
    root.mkdir()
    (root / "requirements.in").write_text(
        "# direct dependencies\n"
        "requests>=2.20\n"
        "PyYAML~=6.0\n"
    )
    (root / "requirements.txt").write_text(
        "certifi==2024.2.2\n"
        "charset-normalizer==3.3.2\n"
        "idna==3.6\n"
        "pyyaml==6.0.1\n"
        "requests==2.31.0\n"
        "urllib3==2.2.1\n"
    )
    return root
