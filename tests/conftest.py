import json
from pathlib import Path

import pytest

from config import Config

from tests.helpers import single_person_config


@pytest.fixture
def sample_config_dict() -> dict:
    path = Path(__file__).resolve().parent.parent / "sample_config.json"
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def simple_config() -> Config:
    return Config(**single_person_config())
