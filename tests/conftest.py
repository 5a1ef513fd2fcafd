# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import pytest

from screenshare.config import Config


@pytest.fixture(autouse=True)
def fresh_config():
    """Every test starts from the built-in defaults."""
    Config.load()
    yield Config()
    Config._config = {}
