from .config_parser import AppConfig, ListenConfig, load_config
from .logging_config import TRACE, init_logging

__all__ = ["AppConfig", "ListenConfig", "TRACE", "init_logging", "load_config"]
