import pytest

from factories import Cluster


@pytest.fixture
def cluster() -> Cluster:
    return Cluster()
