import pytest

from compdb import CompoundDb
from compdb.tests.util import CAFFEINE, GLUCOSE


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "compounds.db"


@pytest.fixture
def db(db_path):
    """
    Read-write store holding Caffeine and Glucose
    """
    store = CompoundDb(db_path).open()
    store.insert_compounds([CAFFEINE, GLUCOSE])
    yield store
    store.close()
