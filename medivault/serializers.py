"""
Response serializers — dataclass → JSON-able dict。

只负责「输出格式化」，不做任何解析或校验。
report 的 file_url 在这里通过 ArtifactStore 现算（公开 URL 或签名 URL），
库里只存 key。
"""


def serialize_patient(patient):
    """Found / PatientIdentity 都有 id；名字字段名不同。"""
    name = getattr(patient, 'name', None)
    if name is None:
        name = getattr(patient, 'display_name', None)
    return {
        'id': str(patient.id),
        'name': name,
    }


def serialize_registered_patient(identity):
    return {
        'id': str(identity.id),
        'name': identity.display_name,
        'phone': identity.phone,
        'email': identity.email,
    }


def serialize_report(report, artifact_store, ttl_seconds):
    file_url = None
    if report.artifact_key:
        file_url = artifact_store.resolve_access_url(artifact_store.ref_for(report.artifact_key), ttl_seconds)

    return {
        'id': str(report.id),
        'name': report.name,
        'type': report.type,
        'lab': report.lab,
        'patient_id': str(report.patient_id),
        'uploaded_by': str(report.uploaded_by) if report.uploaded_by else None,
        'date': report.date.isoformat(),
        'created_at': report.created_at.isoformat(),
        'file_url': file_url,
    }


def serialize_report_list(reports, artifact_store, ttl_seconds):
    results = [serialize_report(r, artifact_store, ttl_seconds) for r in reports]
    return {
        'count': len(results),
        'reports': results,
    }


def serialize_upload_outcome(outcome, artifact_store, ttl_seconds):
    body = {
        'report': serialize_report(outcome.report, artifact_store, ttl_seconds),
        'patient': serialize_patient(outcome.patient),
        'patient_registered': outcome.registered,
        'message': 'Report uploaded successfully',
    }
    if outcome.warnings:
        body['message'] = 'Report saved, but the file could not be stored'
        body['warnings'] = outcome.warnings
    return body
