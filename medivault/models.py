import uuid
from django.db import models
from django.db.models import Q
from django.utils import timezone


class Profile(models.Model):
    """统一身份表：病人和诊断中心共用，user_type 区分。"""

    USER_TYPE_CHOICES = [
        ('patient', 'Patient'),
        ('center', 'Diagnostic center'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user_type = models.CharField(max_length=20, choices=USER_TYPE_CHOICES)
    full_name = models.CharField(max_length=200, blank=True, null=True)
    center_name = models.CharField(max_length=200, blank=True, null=True)
    phone = models.CharField(max_length=32)
    phone_digits = models.CharField(max_length=32, blank=True, null=True)
    email = models.EmailField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'profiles'
        constraints = [
            models.UniqueConstraint(
                fields=['user_type', 'phone_digits'],
                condition=Q(phone_digits__isnull=False),
                name='uq_profile_type_phone_digits',
            ),
        ]
        indexes = [
            models.Index(fields=['user_type', 'phone']),
        ]


class Patient(models.Model):
    """分表方案下的病人表。"""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200, blank=True, null=True)
    phone_number = models.CharField(max_length=32)
    phone_digits = models.CharField(max_length=32, unique=True, blank=True, null=True)
    email = models.EmailField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'patients'
        indexes = [
            models.Index(fields=['phone_number']),
        ]


class Lab(models.Model):
    """按名字 find-or-create 的化验室标签。"""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'labs'


class LabProfile(models.Model):
    """诊断中心 profile ↔ lab 的桥接表（每个中心最多一个 lab）。"""

    lab = models.ForeignKey(Lab, on_delete=models.CASCADE, related_name='profile_links')
    profile = models.OneToOneField(Profile, on_delete=models.CASCADE, related_name='lab_link')

    class Meta:
        db_table = 'lab_profiles'


class Report(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    type = models.CharField(max_length=100)
    lab = models.CharField(max_length=200)
    # 不做外键：引用的是 profiles 还是 patients 取决于 IDENTITY_SCHEMA
    patient_id = models.UUIDField()
    uploaded_by = models.UUIDField(blank=True, null=True)
    # 存的是对象存储的 key，不是 URL；URL 在读取时再生成
    file_url = models.CharField(max_length=500, blank=True, null=True, unique=True)
    date = models.DateField(default=timezone.localdate)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'reports'
        indexes = [
            models.Index(fields=['patient_id', '-created_at']),
            models.Index(fields=['lab', '-created_at']),
        ]
