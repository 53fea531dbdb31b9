from django.urls import path
from .views import (
    ArtifactDownloadView,
    LabReportsView,
    PatientLookupView,
    PatientRegisterView,
    PatientReportsView,
    ReportUploadView,
    StorageEnsureView,
)

urlpatterns = [
    path('patients/', PatientRegisterView.as_view(), name='patient-register'),
    path('patients/lookup/', PatientLookupView.as_view(), name='patient-lookup'),
    path('patients/<uuid:patient_id>/reports/', PatientReportsView.as_view(), name='patient-reports'),
    path('labs/reports/', LabReportsView.as_view(), name='lab-reports'),
    path('reports/', ReportUploadView.as_view(), name='report-upload'),
    path('storage/ensure/', StorageEnsureView.as_view(), name='storage-ensure'),
    path('artifacts/<str:container>/<str:key>', ArtifactDownloadView.as_view(), name='artifact-download'),
]
