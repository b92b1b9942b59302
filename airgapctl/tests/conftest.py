import pytest

from airgapctl.tests.fakes import FakeConnection


@pytest.fixture
def resource_package(tmp_path):
    path = tmp_path / "resources.tar.gz"
    path.write_bytes(b"offline bundle contents")
    return str(path)


@pytest.fixture
def conn():
    return FakeConnection()
