"""
报告关联核心流程。

operator 输入的电话
  → PatientResolver（精确匹配 → 归一化后线性扫描）
  → PatientRegistrar（找不到且给了姓名时注册）
  → ArtifactStore（有文件时：ensure_container → upload）
  → ReportLinker（find-or-create lab → 写 report → 提交后通知）
  → ReportQueryService（按病人 / 按 lab 倒序查询）

每个组件通过构造函数拿到自己的 store，不依赖全局 client。
三个外部调用（查/注册身份、上传文件、写报告）严格串行。
"""

import logging
from dataclasses import dataclass, field
from datetime import date as date_cls
from uuid import UUID

from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.files.base import File
from django.core.validators import validate_email
from django.db import IntegrityError, transaction
from django.utils import timezone

from .exceptions import (
    ConflictError,
    NotFoundError,
    StorageAccessError,
    TransientIOError,
    ValidationError,
)
from .phone import normalize
from .realtime.notify import ReportChangeNotifier, default_notifier, lab_scope, patient_scope
from .records.base import BaseIdentityStore, BaseReportStore
from .records.factory import get_identity_store, get_report_store
from .records.types import (
    Found,
    NewReport,
    NotFound,
    PatientIdentity,
    RegisterPatientRequest,
    ReportRecord,
    ResolveResult,
)
from .storage.base import BaseArtifactStore
from .storage.factory import get_artifact_store
from .storage.types import ArtifactRef

logger = logging.getLogger(__name__)


def parse_uuid(value, field_name):
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(
            message=f"{field_name} must be a valid UUID.",
            code="INVALID_ID",
            detail={"field": field_name, "value": str(value)},
        )


# ── PatientResolver ────────────────────────────────────────────────────────

class PatientResolver:
    """
    电话 → 已存在的病人身份。

    1. 先按原始字符串精确匹配（常见情况，代价低）
    2. 再拉全量候选集，逐个比较 normalize(candidate.phone) == normalize(phone)
    3. 第一个命中的胜出；候选集按 created_at, id 升序，所以是最早注册的那个
    4. 都没命中 → NotFound

    后端故障以 TransientIOError 抛出，调用方不能把它当成 NotFound 去注册新病人。
    """

    def __init__(self, store: BaseIdentityStore):
        self.store = store

    def resolve(self, phone: str) -> ResolveResult:
        raw = (phone or "").strip()
        digits = normalize(raw)
        if not digits:
            raise ValidationError(
                message="Please enter a phone number.",
                code="INVALID_PHONE",
                detail={"field": "phone"},
            )

        exact = self.store.find_patient_by_phone(raw)
        if exact is not None:
            logger.info("[resolver] exact match for %r → %s", raw, exact.id)
            return Found(id=exact.id, name=exact.display_name)

        for candidate in self.store.list_patients():
            if normalize(candidate.phone) == digits:
                logger.info("[resolver] normalized match for %r → %s (stored %r)",
                            raw, candidate.id, candidate.phone)
                return Found(id=candidate.id, name=candidate.display_name)

        logger.info("[resolver] no patient for %r", raw)
        return NotFound(phone=raw)

    def require(self, phone: str) -> Found:
        """resolve() 的严格版本：找不到时抛 NotFoundError。"""
        result = self.resolve(phone)
        if isinstance(result, NotFound):
            raise NotFoundError(
                message="No patient found with this phone number",
                code="PATIENT_NOT_FOUND",
                detail={"phone": result.phone},
            )
        return result


# ── PatientRegistrar ───────────────────────────────────────────────────────

class PatientRegistrar:
    """
    新建病人身份。

    唯一性由 phone_digits 唯一约束兜底：resolve → register 之间不加锁，
    并发注册同一个号码时第二个 insert 会撞约束，转成 ConflictError。
    """

    def __init__(self, store: BaseIdentityStore):
        self.store = store

    @staticmethod
    def validate(name, phone, email) -> RegisterPatientRequest:
        errors = []

        name = (name or "").strip()
        phone = (phone or "").strip()
        email = (email or "").strip() or None

        if not name:
            errors.append({"field": "name", "message": "Name is required."})
        if not phone:
            errors.append({"field": "phone", "message": "Phone number is required."})
        elif not normalize(phone):
            errors.append({"field": "phone", "message": "Phone number must contain digits."})
        if email is not None:
            try:
                validate_email(email)
            except DjangoValidationError:
                errors.append({"field": "email", "message": f"Invalid email address: {email!r}."})

        if errors:
            raise ValidationError(
                message="Name and phone number are required, and email must be valid.",
                code="VALIDATION_ERROR",
                detail={"errors": errors},
            )

        return RegisterPatientRequest(name=name, phone=phone, email=email)

    def _conflict(self, request: RegisterPatientRequest, existing: PatientIdentity | None):
        return ConflictError(
            message="A patient with this phone number already exists.",
            code="DUPLICATE_PHONE",
            detail={
                "phone": request.phone,
                "existing_id": str(existing.id) if existing else None,
            },
        )

    def register(self, name: str, phone: str, email: str | None = None) -> PatientIdentity:
        request = self.validate(name, phone, email)
        digits = normalize(request.phone)

        existing = self.store.find_patient_by_phone_key(digits)
        if existing is not None:
            logger.info("[registrar] %r already registered as %s", request.phone, existing.id)
            raise self._conflict(request, existing)

        try:
            with transaction.atomic():
                identity = self.store.insert_patient(request)
        except IntegrityError as exc:
            # 另一个请求在 resolve 和 insert 之间抢先注册了
            existing = self.store.find_patient_by_phone_key(digits)
            logger.warning("[registrar] lost registration race for %r (existing=%s)",
                           request.phone, existing.id if existing else None)
            raise self._conflict(request, existing) from exc

        logger.info("[registrar] registered patient %s (%r)", identity.id, identity.display_name)
        return identity


# ── ReportLinker ───────────────────────────────────────────────────────────

class ReportLinker:
    """
    把 (病人, lab 标签, 报告名, 类型, 文件引用) 写成一条 report。

    文件必须在调用之前已经上传完成；artifact_ref 只能指向已上传的对象。
    写入失败且带了文件时，安排 Celery 回收孤儿文件，然后原样抛出。
    """

    def __init__(self, identity_store: BaseIdentityStore, report_store: BaseReportStore,
                 notifier: ReportChangeNotifier | None = None):
        self.identity_store = identity_store
        self.report_store = report_store
        self.notifier = notifier or default_notifier

    @staticmethod
    def check_request(center_label, report_name, report_type) -> None:
        errors = []
        if not (report_name or "").strip():
            errors.append({"field": "name", "message": "Report name is required."})
        if not (report_type or "").strip():
            errors.append({"field": "type", "message": "Report type is required."})
        if not (center_label or "").strip():
            errors.append({"field": "center_name", "message": "Lab / center name is required."})
        if errors:
            raise ValidationError(
                message="Please fill out all required fields.",
                code="VALIDATION_ERROR",
                detail={"errors": errors},
            )

    def require_patient(self, patient_id) -> PatientIdentity:
        patient_id = parse_uuid(patient_id, "patient_id")
        patient = self.identity_store.get_patient(patient_id)
        if patient is None:
            raise NotFoundError(
                message="Patient not found. Please verify the patient exists.",
                code="PATIENT_NOT_FOUND",
                detail={"patient_id": str(patient_id)},
            )
        return patient

    def link_report(self, patient_id, center_label: str, report_name: str, report_type: str,
                    artifact_ref: ArtifactRef | None = None, uploaded_by=None,
                    date: date_cls | None = None) -> ReportRecord:
        self.check_request(center_label, report_name, report_type)
        patient = self.require_patient(patient_id)
        uploaded_by = parse_uuid(uploaded_by, "uploaded_by") if uploaded_by else None

        lab = self.identity_store.find_or_create_lab(center_label.strip())

        new_report = NewReport(
            patient_id=patient.id,
            lab=lab.name,
            name=report_name.strip(),
            type=report_type.strip(),
            date=date or timezone.localdate(),
            artifact_key=artifact_ref.key if artifact_ref else None,
            uploaded_by=uploaded_by,
        )

        try:
            with transaction.atomic():
                record = self.report_store.insert(new_report)
        except IntegrityError as exc:
            # file_url 唯一：同一个文件不能挂到第二条 report 上
            raise ConflictError(
                message="This file is already attached to another report.",
                code="ARTIFACT_ALREADY_LINKED",
                detail={"key": new_report.artifact_key},
            ) from exc
        except TransientIOError:
            if artifact_ref is not None:
                self._schedule_orphan_cleanup(artifact_ref)
            raise

        logger.info("[linker] report %s linked to patient %s (lab=%r, file=%s)",
                    record.id, record.patient_id, record.lab, record.artifact_key)
        transaction.on_commit(lambda: self.notifier.publish(record))
        return record

    @staticmethod
    def _schedule_orphan_cleanup(ref: ArtifactRef) -> None:
        from .tasks import delete_orphaned_artifact

        logger.warning("[linker] report insert failed after upload, scheduling cleanup of %s", ref.key)
        try:
            delete_orphaned_artifact.delay(ref.key)
        except Exception:
            logger.exception("[linker] could not schedule cleanup for %s", ref.key)


# ── ReportQueryService ─────────────────────────────────────────────────────

class ReportQueryService:
    """按病人 / 按 lab 查询报告，新的在前；订阅方收到通知后重新查全量。"""

    def __init__(self, report_store: BaseReportStore, notifier: ReportChangeNotifier | None = None):
        self.report_store = report_store
        self.notifier = notifier or default_notifier

    def list_by_patient(self, patient_id) -> list[ReportRecord]:
        return self.report_store.list_by_patient(parse_uuid(patient_id, "patient_id"))

    def list_by_lab(self, lab_label: str) -> list[ReportRecord]:
        label = (lab_label or "").strip()
        if not label:
            raise ValidationError(
                message="Lab name is required",
                code="VALIDATION_ERROR",
                detail={"field": "lab"},
            )
        return self.report_store.list_by_lab(label)

    def subscribe_patient(self, patient_id, callback):
        return self.notifier.subscribe(patient_scope(parse_uuid(patient_id, "patient_id")), callback)

    def subscribe_lab(self, lab_label: str, callback):
        return self.notifier.subscribe(lab_scope(lab_label.strip()), callback)


# ── ReportUploadService ────────────────────────────────────────────────────

@dataclass
class UploadOutcome:
    report: ReportRecord
    patient: Found
    registered: bool = False
    artifact_ref: ArtifactRef | None = None
    warnings: list[dict] = field(default_factory=list)


class ReportUploadService:
    """
    诊断中心上传报告的完整流程。

    文件上传失败不影响报告写入：report 照常创建（artifact_ref=None），
    失败原因以 warning 返回给调用方。其余任何失败都中止整个操作。
    """

    def __init__(self, identity_store: BaseIdentityStore, artifact_store: BaseArtifactStore,
                 resolver: PatientResolver, registrar: PatientRegistrar, linker: ReportLinker):
        self.identity_store = identity_store
        self.artifact_store = artifact_store
        self.resolver = resolver
        self.registrar = registrar
        self.linker = linker

    def resolve_or_register(self, phone, patient_name=None, patient_email=None) -> tuple[Found, bool]:
        result = self.resolver.resolve(phone)
        if isinstance(result, Found):
            return result, False

        if not (patient_name or "").strip():
            raise NotFoundError(
                message="No patient found with this phone number. Register a new patient to continue.",
                code="PATIENT_NOT_FOUND",
                detail={"phone": result.phone},
            )

        try:
            identity = self.registrar.register(patient_name, phone, patient_email)
        except ConflictError:
            # 并发注册：对方已经建好了，重新 resolve 一次拿到它
            retry = self.resolver.resolve(phone)
            if isinstance(retry, Found):
                logger.info("[upload] registration raced, reusing %s", retry.id)
                return retry, False
            raise

        return Found(id=identity.id, name=identity.display_name), True

    def center_label(self, center_label=None, uploaded_by=None) -> str:
        label = (center_label or "").strip()
        if label or not uploaded_by:
            return label

        center = self.identity_store.get_center(parse_uuid(uploaded_by, "uploaded_by"))
        if center is None:
            raise NotFoundError(
                message="Diagnostic center not found.",
                code="CENTER_NOT_FOUND",
                detail={"center_id": str(uploaded_by)},
            )
        # 中心绑定了 lab 时用 lab 名，否则用中心名
        return (center.lab_name or center.display_name or "").strip()

    def try_upload(self, file_name, file_data, content_type) -> tuple[ArtifactRef | None, dict | None]:
        """file_data 可以是 bytes，也可以是 Django File（先按 size 检查再读入内存）。"""
        try:
            if isinstance(file_data, File):
                self.artifact_store.check_size(file_data.size)
            self.artifact_store.ensure_container()
            if isinstance(file_data, File):
                file_data = file_data.read()
            return self.artifact_store.upload(file_name, file_data, content_type), None
        except (ValidationError, StorageAccessError, TransientIOError) as exc:
            logger.warning("[upload] file %r not stored (%s): %s", file_name, exc.code, exc.message)
            return None, {
                "code": "ARTIFACT_UPLOAD_FAILED",
                "message": f"The report was saved without its file: {exc.message}",
                "detail": {"reason": exc.code, "type": exc.type},
            }

    def upload_report(self, *, report_name, report_type, phone=None, patient_id=None,
                      center_label=None, uploaded_by=None, file_name=None, file_data=None,
                      content_type=None, patient_name=None, patient_email=None,
                      date=None) -> UploadOutcome:
        label = self.center_label(center_label, uploaded_by)
        self.linker.check_request(label, report_name, report_type)

        registered = False
        if patient_id is not None:
            identity = self.linker.require_patient(patient_id)
            patient = Found(id=identity.id, name=identity.display_name)
        else:
            patient, registered = self.resolve_or_register(phone, patient_name, patient_email)

        warnings = []
        artifact_ref = None
        if file_data is not None:
            artifact_ref, warning = self.try_upload(file_name, file_data, content_type)
            if warning:
                warnings.append(warning)

        report = self.linker.link_report(
            patient.id, label, report_name, report_type,
            artifact_ref=artifact_ref, uploaded_by=uploaded_by, date=date,
        )
        return UploadOutcome(
            report=report,
            patient=patient,
            registered=registered,
            artifact_ref=artifact_ref,
            warnings=warnings,
        )


# ── 默认装配 ───────────────────────────────────────────────────────────────
#
# View / task 用这些函数拿到按 settings 装配好的组件。

def get_patient_resolver() -> PatientResolver:
    return PatientResolver(get_identity_store())


def get_patient_registrar() -> PatientRegistrar:
    return PatientRegistrar(get_identity_store())


def get_report_linker() -> ReportLinker:
    return ReportLinker(get_identity_store(), get_report_store())


def get_report_query_service() -> ReportQueryService:
    return ReportQueryService(get_report_store())


def get_upload_service() -> ReportUploadService:
    identity_store = get_identity_store()
    return ReportUploadService(
        identity_store=identity_store,
        artifact_store=get_artifact_store(),
        resolver=PatientResolver(identity_store),
        registrar=PatientRegistrar(identity_store),
        linker=ReportLinker(identity_store, get_report_store()),
    )
