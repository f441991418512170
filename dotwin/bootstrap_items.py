from __future__ import annotations

from dotwin.items import BloatwareItem, ItemKind, PackageItem, ProfileItem, RegistryItem, TerminalItem
from dotwin.registry.item_registry import ItemRegistry


def build_item_registry() -> ItemRegistry:
    """
    Register built-in configuration item kinds shipped with the framework.
    """
    reg = ItemRegistry()
    reg.register(ItemKind.PACKAGE.value, PackageItem)
    reg.register(ItemKind.BLOATWARE.value, BloatwareItem)
    reg.register(ItemKind.REGISTRY.value, RegistryItem)
    reg.register(ItemKind.TERMINAL.value, TerminalItem)
    reg.register(ItemKind.PROFILE.value, ProfileItem)
    return reg
