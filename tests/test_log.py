import logging
import subprocess
import sys
from pathlib import Path

import colorlog
import pytest

from fastvlm.log import QUIET_LIBRARIES, get_logger

ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture
def fresh_logger():
    logger = logging.getLogger("fastvlm.test_console")
    yield logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


def test_import_configures_no_handlers():
    # Other tests run the CLI in this process, so check in a clean interpreter
    code = "import logging, fastvlm; assert logging.getLogger('fastvlm').handlers == []"
    proc = subprocess.run([sys.executable, "-c", code], cwd=ROOT, capture_output=True, text=True)
    assert proc.returncode == 0, proc.stderr


def test_get_logger_attaches_one_coloured_handler(fresh_logger):
    get_logger(fresh_logger.name, logging.DEBUG)
    logger = get_logger(fresh_logger.name, logging.WARNING)
    assert logger is fresh_logger
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, colorlog.ColoredFormatter)
    assert logger.level == logging.WARNING
    assert logger.handlers[0].level == logging.WARNING


def test_get_logger_quiets_noisy_libraries(fresh_logger):
    get_logger(fresh_logger.name)
    for library in QUIET_LIBRARIES:
        assert logging.getLogger(library).level == logging.WARNING
    assert logging.getLogger("onnxruntime").level == logging.WARNING
