"""
具体 Store 实现（Django ORM）。

新增表结构：在此文件添加一个类，然后在 factory.py 注册即可。

已注册身份表结构：
  profiles — ProfilesIdentityStore  (profiles 单表，user_type='patient' / 'center')
  split    — SplitIdentityStore     (patients 独立表，phone_number 列)

报告表只有一种结构：DjangoReportStore。
"""

import logging
from contextlib import contextmanager
from uuid import UUID

from django.db import DatabaseError, IntegrityError, transaction

from ..exceptions import TransientIOError
from ..models import Lab, Patient, Profile, Report
from ..phone import phone_key
from .base import BaseIdentityStore, BaseReportStore
from .types import (
    CenterIdentity,
    LabRecord,
    NewReport,
    PatientIdentity,
    RegisterPatientRequest,
    ReportRecord,
)

logger = logging.getLogger(__name__)


@contextmanager
def backend_errors(operation: str):
    """
    把数据库故障统一翻译成 TransientIOError。

    IntegrityError 原样抛出：唯一约束冲突由调用方转成业务异常。
    """
    try:
        yield
    except IntegrityError:
        raise
    except DatabaseError as exc:
        logger.error("[records] %s failed: %r", operation, exc)
        raise TransientIOError(
            message=f"The record store is unavailable ({operation}). Please retry.",
            detail={'operation': operation},
        ) from exc


class _DjangoIdentityStore(BaseIdentityStore):
    """两种表结构共用的部分：诊断中心始终在 profiles 里，lab 始终在 labs 里。"""

    def get_center(self, center_id: UUID) -> CenterIdentity | None:
        with backend_errors("get_center"):
            row = (
                Profile.objects
                .filter(id=center_id, user_type='center')
                .select_related('lab_link__lab')
                .first()
            )
            link = getattr(row, 'lab_link', None) if row else None
        if row is None:
            return None
        return CenterIdentity(
            id=row.id,
            display_name=row.center_name or row.full_name,
            phone=row.phone,
            lab_name=link.lab.name if link else None,
        )

    def find_or_create_lab(self, name: str) -> LabRecord:
        with backend_errors("find_or_create_lab"):
            lab = Lab.objects.filter(name=name).first()
            if lab is None:
                try:
                    with transaction.atomic():
                        lab = Lab.objects.create(name=name)
                    logger.info("[records] created lab %r id=%s", name, lab.id)
                except IntegrityError:
                    # 并发请求先一步创建了同名 lab
                    lab = Lab.objects.get(name=name)
        return LabRecord(id=lab.id, name=lab.name)


# ── ProfilesIdentityStore ─────────────────────────────────────────────────
#
# profiles 表（病人和中心共用）:
#   id | user_type | full_name | center_name | phone | phone_digits | email | created_at

class ProfilesIdentityStore(_DjangoIdentityStore):
    schema = "profiles"

    @staticmethod
    def _to_identity(row: Profile) -> PatientIdentity:
        return PatientIdentity(
            id=row.id,
            phone=row.phone,
            display_name=row.full_name,
            email=row.email,
        )

    def _patients(self):
        return Profile.objects.filter(user_type='patient')

    def find_patient_by_phone(self, phone: str) -> PatientIdentity | None:
        with backend_errors("find_patient_by_phone"):
            row = self._patients().filter(phone=phone).order_by('created_at', 'id').first()
        return self._to_identity(row) if row else None

    def list_patients(self) -> list[PatientIdentity]:
        with backend_errors("list_patients"):
            rows = list(self._patients().order_by('created_at', 'id'))
        return [self._to_identity(r) for r in rows]

    def find_patient_by_phone_key(self, digits: str) -> PatientIdentity | None:
        with backend_errors("find_patient_by_phone_key"):
            row = self._patients().filter(phone_digits=digits).first()
        return self._to_identity(row) if row else None

    def get_patient(self, patient_id: UUID) -> PatientIdentity | None:
        with backend_errors("get_patient"):
            row = self._patients().filter(id=patient_id).first()
        return self._to_identity(row) if row else None

    def insert_patient(self, request: RegisterPatientRequest) -> PatientIdentity:
        with backend_errors("insert_patient"):
            row = Profile.objects.create(
                user_type='patient',
                full_name=request.name,
                phone=request.phone,
                phone_digits=phone_key(request.phone),
                email=request.email,
            )
        return self._to_identity(row)


# ── SplitIdentityStore ────────────────────────────────────────────────────
#
# patients 表（只存病人）:
#   id | name | phone_number | phone_digits | email | created_at

class SplitIdentityStore(_DjangoIdentityStore):
    schema = "split"

    @staticmethod
    def _to_identity(row: Patient) -> PatientIdentity:
        return PatientIdentity(
            id=row.id,
            phone=row.phone_number,
            display_name=row.name,
            email=row.email,
        )

    def find_patient_by_phone(self, phone: str) -> PatientIdentity | None:
        with backend_errors("find_patient_by_phone"):
            row = Patient.objects.filter(phone_number=phone).order_by('created_at', 'id').first()
        return self._to_identity(row) if row else None

    def list_patients(self) -> list[PatientIdentity]:
        with backend_errors("list_patients"):
            rows = list(Patient.objects.order_by('created_at', 'id'))
        return [self._to_identity(r) for r in rows]

    def find_patient_by_phone_key(self, digits: str) -> PatientIdentity | None:
        with backend_errors("find_patient_by_phone_key"):
            row = Patient.objects.filter(phone_digits=digits).first()
        return self._to_identity(row) if row else None

    def get_patient(self, patient_id: UUID) -> PatientIdentity | None:
        with backend_errors("get_patient"):
            row = Patient.objects.filter(id=patient_id).first()
        return self._to_identity(row) if row else None

    def insert_patient(self, request: RegisterPatientRequest) -> PatientIdentity:
        with backend_errors("insert_patient"):
            row = Patient.objects.create(
                name=request.name,
                phone_number=request.phone,
                phone_digits=phone_key(request.phone),
                email=request.email,
            )
        return self._to_identity(row)


# ── DjangoReportStore ─────────────────────────────────────────────────────

class DjangoReportStore(BaseReportStore):

    @staticmethod
    def _to_record(row: Report) -> ReportRecord:
        return ReportRecord(
            id=row.id,
            name=row.name,
            type=row.type,
            lab=row.lab,
            patient_id=row.patient_id,
            date=row.date,
            created_at=row.created_at,
            uploaded_by=row.uploaded_by,
            artifact_key=row.file_url,
        )

    def insert(self, report: NewReport) -> ReportRecord:
        with backend_errors("insert_report"):
            row = Report.objects.create(
                name=report.name,
                type=report.type,
                lab=report.lab,
                patient_id=report.patient_id,
                uploaded_by=report.uploaded_by,
                file_url=report.artifact_key,
                date=report.date,
            )
        return self._to_record(row)

    def list_by_patient(self, patient_id: UUID) -> list[ReportRecord]:
        with backend_errors("list_reports_by_patient"):
            rows = list(Report.objects.filter(patient_id=patient_id).order_by('-created_at', '-id'))
        return [self._to_record(r) for r in rows]

    def list_by_lab(self, lab_label: str) -> list[ReportRecord]:
        with backend_errors("list_reports_by_lab"):
            rows = list(Report.objects.filter(lab=lab_label).order_by('-created_at', '-id'))
        return [self._to_record(r) for r in rows]
