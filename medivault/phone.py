"""
电话号码归一化。

只用于比较，不作为存储的规范形式：库里保存操作员输入的原始格式，
比较时两边都 normalize 一次。
"""

import re

# 只认 ASCII 0-9：全角、阿拉伯-印度数字等一律去掉
_NON_DIGIT_RE = re.compile(r"[^0-9]")


def normalize(raw: str | None) -> str:
    """去掉所有非数字字符。纯函数、全定义、幂等。"""
    return _NON_DIGIT_RE.sub("", raw or "")


def phone_key(raw: str | None) -> str | None:
    """写入 phone_digits 比较列的值；归一化后为空则返回 None（不参与唯一约束）。"""
    return normalize(raw) or None
