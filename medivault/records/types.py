"""
记录层（身份 / 化验室 / 报告）的标准数据结构。

所有 IdentityStore / ReportStore 的实现都返回这些 dataclass，
业务层（services.py）只消费这些结构，永远不碰 ORM 行或原始请求 dict。
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Union
from uuid import UUID


@dataclass(frozen=True)
class PatientIdentity:
    id: UUID
    phone: str                         # 操作员输入的原始格式
    display_name: str | None = None
    email: str | None = None


@dataclass(frozen=True)
class CenterIdentity:
    id: UUID
    display_name: str | None
    phone: str
    lab_name: str | None = None        # lab_profiles 里绑定的化验室名


@dataclass(frozen=True)
class LabRecord:
    id: UUID
    name: str


# ── Resolver 结果 ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Found:
    id: UUID
    name: str | None


@dataclass(frozen=True)
class NotFound:
    phone: str


ResolveResult = Union[Found, NotFound]


# ── 请求 / 记录 ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RegisterPatientRequest:
    name: str
    phone: str
    email: str | None = None


@dataclass(frozen=True)
class NewReport:
    """ReportStore.insert() 的入参，字段都已经过 linker 校验。"""

    patient_id: UUID
    lab: str
    name: str
    type: str
    date: date
    artifact_key: str | None = None
    uploaded_by: UUID | None = None


@dataclass(frozen=True)
class ReportRecord:
    id: UUID
    name: str
    type: str
    lab: str
    patient_id: UUID
    date: date
    created_at: datetime
    uploaded_by: UUID | None = None
    artifact_key: str | None = None
