import logging

import pytest


@pytest.fixture(autouse=True)
def reset_runner_logger():
    """Undo handlers and propagation changes made by setup_logging."""
    yield
    package_logger = logging.getLogger("taskrunner")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(logging.NOTSET)
    package_logger.propagate = True
