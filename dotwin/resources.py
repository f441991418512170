from __future__ import annotations

from pathlib import Path


def _package_dir(package_name: str) -> Path:
    """
    Return the on-disk directory for an imported package.

    Note:
    This assumes the package is installed in a filesystem-backed environment
    (typical for pip/wheel installs and editable installs).
    """
    module = __import__(package_name, fromlist=["__file__"])
    p = getattr(module, "__file__", None)
    if not isinstance(p, str) or not p:
        raise RuntimeError(f"Cannot resolve package directory for: {package_name}")
    return Path(p).resolve().parent


def schemas_dir() -> Path:
    """
    Directory that contains the shipped JSON Schemas (configuration, manifests, exports).
    """
    return _package_dir("dotwin") / "schemas"


def plugins_dir() -> Path:
    """
    Directory that contains built-in plugin packages (e.g. plugins/builtin_windows).
    """
    return _package_dir("plugins")
