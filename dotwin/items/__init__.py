from .base import ConfigurationItem, ItemKind
from .packages import BloatwareItem, PackageItem
from .settings_items import ProfileItem, RegistryItem, TerminalItem
from .system import CommandRunner, RegistryAccessor, SubprocessRunner, SystemAdapters, is_elevated

__all__ = [
  "ConfigurationItem",
  "ItemKind",
  "PackageItem",
  "BloatwareItem",
  "RegistryItem",
  "TerminalItem",
  "ProfileItem",
  "CommandRunner",
  "RegistryAccessor",
  "SubprocessRunner",
  "SystemAdapters",
  "is_elevated",
]
