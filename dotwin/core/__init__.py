from .errors import (
  ConfigurationLoadError,
  DotWinError,
  EnvironmentValidationError,
  ExportError,
  InvalidParent,
  ItemExecutionError,
  PluginError,
  UnknownProgressId,
  ValidationError,
)

__all__ = [
  "DotWinError",
  "ValidationError",
  "InvalidParent",
  "UnknownProgressId",
  "EnvironmentValidationError",
  "ConfigurationLoadError",
  "ExportError",
  "PluginError",
  "ItemExecutionError",
]
