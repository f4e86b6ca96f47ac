import pytest

from dockyard.evaluator import Evaluator
from dockyard.state import StateManager
from dockyard.utils import SeededIdGenerator


@pytest.fixture
def ids():
    return SeededIdGenerator(seed=1)


@pytest.fixture
def sm():
    """StateManager over a seeded evaluator, used to build up engine state."""
    return StateManager(evaluator=Evaluator(SeededIdGenerator(seed=2)))
