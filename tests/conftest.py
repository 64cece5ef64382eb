import os
from types import SimpleNamespace

import pytest

from gradgen import Graph, InitKind
from gradgen.logger import get_gradgen_logger


def pytest_addoption(parser):
    parser.addoption(
        "--log-graphs",
        action="store_true",
        help="Log every adjoint rule and accumulation at DEBUG level",
    )


def pytest_configure(config):
    if config.getoption("--log-graphs"):
        os.environ["GRADGEN_LOG_LEVEL"] = "DEBUG"
        # loggers created at import time read the level before this hook runs
        get_gradgen_logger()


# ---------------------------------------------------------------------------
# Graph fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def graph():
    return Graph("test")


@pytest.fixture
def mlp():
    """Single fully connected layer with relu and a regression loss.

    x(4, 3) -> fc(w(3, 2), b(2,)) -> relu -> regression(expected) -> save
    """
    g = Graph("mlp")
    x = g.create_variable("x", (4, 3))
    w = g.create_variable("w", (3, 2), trainable=True, init=InitKind.XAVIER, value=3.0)
    b = g.create_variable("b", (2,), trainable=True, init=InitKind.BROADCAST, value=0.1)
    expected = g.create_variable("expected", (4, 2))
    fc = g.create_fully_connected("fc", x, w, b)
    act = g.create_relu("relu", fc)
    loss = g.create_regression("loss", act, expected)
    save = g.create_save("out", loss)
    return SimpleNamespace(
        graph=g, x=x, w=w, b=b, expected=expected, fc=fc, relu=act, loss=loss, save=save
    )
