import os

import pytest

import gifengine
from gifbuilder import BLACK, BLUE, GREEN, RED

os.environ.setdefault('PYGAME_HIDE_SUPPORT_PROMPT', '1')


@pytest.fixture(autouse=True)
def default_flags(monkeypatch):
    # Tests flip the module flags, put them back every time.
    monkeypatch.setattr(gifengine, 'VERBOSE', False)
    monkeypatch.setattr(gifengine, 'ENFORCE_VERSION', False)
    monkeypatch.setattr(gifengine, 'TRANSPARENCY_NEEDS_FLAG', False)
    monkeypatch.setattr(gifengine, 'SKIP_DANGLING_TERMINATORS', False)


@pytest.fixture
def palette():
    return [BLACK, RED, GREEN, BLUE]
