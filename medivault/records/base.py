"""
BaseIdentityStore / BaseReportStore — 持久化能力的抽象接口。

身份表结构在不同阶段并不一致（profiles 单表 vs patients/labs 分表），
业务层只依赖这里声明的能力，具体表结构由 adapters.py 里的实现翻译。

新增一种表结构只需：
1. 继承 BaseIdentityStore
2. 实现下面的抽象方法
3. 在 factory.py 的 _build_registry() 注册一行
"""

from abc import ABC, abstractmethod
from uuid import UUID

from .types import (
    CenterIdentity,
    LabRecord,
    NewReport,
    PatientIdentity,
    RegisterPatientRequest,
    ReportRecord,
)


class BaseIdentityStore(ABC):

    # 子类声明自己对应的 schema 标识符（与 factory 注册键一致）
    schema: str = ""

    @abstractmethod
    def find_patient_by_phone(self, phone: str) -> PatientIdentity | None:
        """按存储的原始 phone 字符串做精确匹配。"""

    @abstractmethod
    def list_patients(self) -> list[PatientIdentity]:
        """
        全量候选集，按 (created_at, id) 升序。

        顺序稳定是 resolver 模糊匹配 "first match wins" 的前提。
        """

    @abstractmethod
    def find_patient_by_phone_key(self, digits: str) -> PatientIdentity | None:
        """按 phone_digits 比较列查找；用于冲突时报告已存在的身份。"""

    @abstractmethod
    def get_patient(self, patient_id: UUID) -> PatientIdentity | None:
        ...

    @abstractmethod
    def insert_patient(self, request: RegisterPatientRequest) -> PatientIdentity:
        """
        插入一行并返回新身份。

        Raises:
            django.db.IntegrityError: phone_digits 唯一约束冲突，由 registrar 转换
        """

    @abstractmethod
    def get_center(self, center_id: UUID) -> CenterIdentity | None:
        ...

    @abstractmethod
    def find_or_create_lab(self, name: str) -> LabRecord:
        """按名字幂等 find-or-create。"""


class BaseReportStore(ABC):

    @abstractmethod
    def insert(self, report: NewReport) -> ReportRecord:
        ...

    @abstractmethod
    def list_by_patient(self, patient_id: UUID) -> list[ReportRecord]:
        """按 created_at 倒序。"""

    @abstractmethod
    def list_by_lab(self, lab_label: str) -> list[ReportRecord]:
        """按 created_at 倒序。"""
