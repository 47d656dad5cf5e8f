# Common utilities
from sshistorian.common.config import Config as Config
from sshistorian.common.logging_utils import setup_logger as setup_logger
from sshistorian.common.mixins import Configurable as Configurable

__all__ = ["Config", "Configurable", "setup_logger"]
