"""业务包注册中心：集中管理可挂载到主应用的业务模块。"""

from __future__ import annotations

import os
from typing import Dict

from . import query_tree
from .types import AppPackage

ACTIVE_PACKAGE_ENV = "APP_ACTIVE_PACKAGE"

PACKAGE_REGISTRY: Dict[str, AppPackage] = {pkg.name: pkg for pkg in (query_tree.package,)}


def get_active_package() -> AppPackage:
    """按 ``APP_ACTIVE_PACKAGE`` 选择业务包，默认启用查询树。"""
    name = os.getenv(ACTIVE_PACKAGE_ENV) or query_tree.package.name
    package = PACKAGE_REGISTRY.get(name)
    if package is None:
        raise RuntimeError(f"未找到名为 '{name}' 的业务包，可用选项：{', '.join(PACKAGE_REGISTRY)}")
    return package


__all__ = ["query_tree", "PACKAGE_REGISTRY", "get_active_package"]
