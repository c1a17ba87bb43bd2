import enum

from _pytest.config import Config


class MarkerSpec(enum.Enum):
    unit = "Quick tests that do not touch a database file"
    component = "Tests that open a SQLite database"

    @property
    def description(self) -> str:
        return self.value


def pytest_configure(config: Config):

    for marker_spec in MarkerSpec:
        config.addinivalue_line(
            "markers", f"{marker_spec.name}: {marker_spec.description}"
        )
