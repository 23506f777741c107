"""
版本号规范化与比较

规范形式：点分非负整数字符串（如 "1.308.0"）。
Browser 的旧版平铺整数（<= 1227）保留为不带点的数字字符串，
比较时作为独立格式处理。
"""

import re
from enum import Enum
from typing import Any, List, Optional

from .models import Domain

# Browser 旧版编号的上限：<= 1227 的整数没有点分结构
BROWSER_LEGACY_THRESHOLD = 1227

_LEADING_INT = re.compile(r"^(\d+)")


class VersionOrder(str, Enum):
    """current 相对 latest 的顺序"""
    OLDER = "older"
    EQUAL = "equal"
    NEWER = "newer"
    INCOMPARABLE = "incomparable"


def _convert_browser_flat(number: int) -> str:
    """
    转换 Browser 平铺整数

    例：1216 -> "1216"，1308 -> "1.308.0"（首位是 major，其余是 minor）
    """
    if number <= BROWSER_LEGACY_THRESHOLD:
        return str(number)
    digits = str(number)
    return f"{digits[0]}.{int(digits[1:])}.0"


def normalize_version(domain: Domain, raw: Any) -> Optional[str]:
    """
    把各领域的原始版本值转换为规范字符串

    Args:
        domain: 产品领域
        raw: 点分字符串、整数或 None

    Returns:
        规范版本字符串；无法表示时返回 None（调用方视为“没有当前版本”）
    """
    if raw is None or isinstance(raw, bool):
        return None

    if isinstance(raw, int):
        if raw < 0:
            return None
        if domain == Domain.BROWSER:
            return _convert_browser_flat(raw)
        return str(raw)

    if not isinstance(raw, str):
        return None

    text = raw.strip()
    if not text:
        return None

    if domain == Domain.BROWSER and text.isdigit():
        return _convert_browser_flat(int(text))

    # APM / INFRA / MOBILE：已经是点分格式，缺失的分量在比较时补 0
    return text


def is_dotted(version: str) -> bool:
    return "." in version


def _parse_components(version: str) -> Optional[List[int]]:
    parts = []
    for component in version.split("."):
        match = _LEADING_INT.match(component.strip())
        if match is None:
            return None
        parts.append(int(match.group(1)))
    return parts


def compare_versions(
    current: Optional[str],
    latest: Optional[str],
    domain: Optional[Domain] = None,
) -> VersionOrder:
    """
    比较 current 与 latest

    - 任一为 None 时返回 INCOMPARABLE
    - Browser 格式优先级：平铺旧版号总是早于点分版本，点分版本从不早于平铺旧版号
    - 同格式：逐段按整数比较，缺失的尾段视为 0；某段不以数字开头时返回 INCOMPARABLE
    """
    if not current or not latest:
        return VersionOrder.INCOMPARABLE

    if domain == Domain.BROWSER:
        current_dotted = is_dotted(current)
        latest_dotted = is_dotted(latest)
        if not current_dotted and latest_dotted:
            return VersionOrder.OLDER
        if current_dotted and not latest_dotted:
            return VersionOrder.NEWER

    current_parts = _parse_components(current)
    latest_parts = _parse_components(latest)
    if current_parts is None or latest_parts is None:
        return VersionOrder.INCOMPARABLE

    width = max(len(current_parts), len(latest_parts))
    current_parts += [0] * (width - len(current_parts))
    latest_parts += [0] * (width - len(latest_parts))

    for current_part, latest_part in zip(current_parts, latest_parts):
        if current_part < latest_part:
            return VersionOrder.OLDER
        if current_part > latest_part:
            return VersionOrder.NEWER
    return VersionOrder.EQUAL


def is_outdated(
    current: Optional[str],
    latest: Optional[str],
    domain: Optional[Domain] = None,
) -> bool:
    """current 严格早于 latest 时为 True"""
    return compare_versions(current, latest, domain) is VersionOrder.OLDER
