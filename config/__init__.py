from .config_loader import config_loader as config
from .settings import ConfigurationError, SessionSettings

__all__ = ['config', 'ConfigurationError', 'SessionSettings']
