"""
Database models for the NutriVault practice backend.

The schema covers access control (roles, permissions, users, API keys),
the clinical record (patients, dietitian links, visits, measures, custom
fields, documents), billing, the recipe library, e-mail templates and
logs, UI themes, scheduled jobs and the audit trail.  Rows that users may
"delete" from the UI but that are still referenced elsewhere carry an
``is_active`` flag instead of being removed.
"""
from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils import timezone
from django.utils.functional import cached_property


# ---------------------------------------------------------------------
# Access control
# ---------------------------------------------------------------------
class Permission(models.Model):
    """A permission code such as ``patients.read``."""
    code = models.CharField(max_length=100, unique=True)
    resource = models.CharField(max_length=50, db_index=True)
    action = models.CharField(max_length=50)
    description = models.CharField(max_length=255, blank=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['resource', 'action']

    def __str__(self) -> str:
        return self.code


class Role(models.Model):
    """A named bundle of permission codes.

    ``ADMIN`` bypasses every permission check, ``DIETITIAN`` is scoped to
    the patients it is linked to and ``PATIENT`` only reaches the portal.
    """
    ADMIN = 'ADMIN'
    DIETITIAN = 'DIETITIAN'
    ASSISTANT = 'ASSISTANT'
    VIEWER = 'VIEWER'
    PATIENT = 'PATIENT'

    name = models.CharField(max_length=50, unique=True)
    description = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)
    is_system = models.BooleanField(default=False)
    permissions = models.ManyToManyField(Permission, related_name='roles', blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']

    def __str__(self) -> str:
        return self.name


class Theme(models.Model):
    """A colour palette users can pick for the web client."""
    name = models.CharField(max_length=100, unique=True)
    description = models.CharField(max_length=255, blank=True)
    colors = models.JSONField(default=dict)
    is_default = models.BooleanField(default=False)
    is_system = models.BooleanField(default=False)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='+'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return self.name


class User(AbstractUser):
    """Application user with a single role and login lockout state."""
    role = models.ForeignKey(Role, null=True, blank=True, on_delete=models.PROTECT, related_name='users')
    phone = models.CharField(max_length=30, blank=True)
    failed_login_attempts = models.PositiveIntegerField(default=0)
    locked_until = models.DateTimeField(null=True, blank=True)
    password_reset_token = models.CharField(max_length=64, null=True, blank=True, db_index=True)
    password_reset_expires_at = models.DateTimeField(null=True, blank=True)
    theme = models.ForeignKey(Theme, null=True, blank=True, on_delete=models.SET_NULL, related_name='users')

    def __str__(self) -> str:
        return f"{self.username} ({self.role_name})"

    @property
    def role_name(self) -> str | None:
        return self.role.name if self.role_id else None

    @property
    def is_admin(self) -> bool:
        return self.role_name == Role.ADMIN

    @cached_property
    def permission_codes(self) -> frozenset[str]:
        if not self.role_id or not self.role.is_active:
            return frozenset()
        return frozenset(
            self.role.permissions.filter(is_active=True).values_list('code', flat=True)
        )

    def is_locked(self, now=None) -> bool:
        now = now or timezone.now()
        return bool(self.locked_until and self.locked_until > now)

    def get_display_name(self) -> str:
        return self.get_full_name() or self.username


class ApiKey(models.Model):
    """Long-lived credential for integrations, sent in ``X-API-Key``.

    Only the SHA-256 hash of the key is stored; ``prefix`` keeps the first
    characters for display.
    """
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='api_keys')
    name = models.CharField(max_length=100)
    prefix = models.CharField(max_length=16)
    key_hash = models.CharField(max_length=64, unique=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    last_used_at = models.DateTimeField(null=True, blank=True)
    usage_count = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.name} ({self.prefix}...)"

    def is_expired(self, now=None) -> bool:
        now = now or timezone.now()
        return bool(self.expires_at and self.expires_at <= now)


# ---------------------------------------------------------------------
# Patients & visits
# ---------------------------------------------------------------------
class Patient(models.Model):
    GENDER_CHOICES = [
        ('male', 'Male'),
        ('female', 'Female'),
        ('other', 'Other'),
    ]
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=10, choices=GENDER_CHOICES, blank=True)
    email = models.EmailField(blank=True, db_index=True)
    phone = models.CharField(max_length=30, blank=True)
    address = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=100, blank=True)
    postal_code = models.CharField(max_length=20, blank=True)
    medical_notes = models.TextField(blank=True)
    dietary_preferences = models.TextField(blank=True)
    allergies = models.TextField(blank=True)
    is_active = models.BooleanField(default=True, db_index=True)
    # Portal account for users holding the PATIENT role
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='patient_record'
    )
    dietitians = models.ManyToManyField(
        settings.AUTH_USER_MODEL, through='PatientDietitian', related_name='linked_patients', blank=True
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='+'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['last_name', 'first_name']

    def __str__(self) -> str:
        return self.full_name

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class PatientDietitian(models.Model):
    """Care link between a patient and a dietitian."""
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='dietitian_links')
    dietitian = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='patient_links')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = [('patient', 'dietitian')]

    def __str__(self) -> str:
        return f"{self.patient} <-> {self.dietitian}"


class Visit(models.Model):
    SCHEDULED = 'SCHEDULED'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'
    NO_SHOW = 'NO_SHOW'
    STATUS_CHOICES = [
        (SCHEDULED, 'Scheduled'),
        (COMPLETED, 'Completed'),
        (CANCELLED, 'Cancelled'),
        (NO_SHOW, 'No show'),
    ]
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='visits')
    dietitian = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='visits'
    )
    visit_date = models.DateTimeField(db_index=True)
    visit_type = models.CharField(max_length=100, default='Consultation')
    duration_minutes = models.PositiveIntegerField(default=60)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=SCHEDULED, db_index=True)
    chief_complaint = models.TextField(blank=True)
    assessment = models.TextField(blank=True)
    recommendations = models.TextField(blank=True)
    notes = models.TextField(blank=True)
    next_visit_date = models.DateTimeField(null=True, blank=True)
    reminder_sent_at = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='+'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-visit_date']
        indexes = [models.Index(fields=['dietitian', 'visit_date'])]

    def __str__(self) -> str:
        return f"Visit {self.id} ({self.patient_id} @ {self.visit_date:%Y-%m-%d %H:%M})"

    def has_clinical_content(self) -> bool:
        texts = (self.chief_complaint, self.assessment, self.recommendations, self.notes)
        return any((t or '').strip() for t in texts)


# ---------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------
class Invoice(models.Model):
    DRAFT = 'DRAFT'
    SENT = 'SENT'
    PAID = 'PAID'
    PARTIAL = 'PARTIAL'
    OVERDUE = 'OVERDUE'
    CANCELLED = 'CANCELLED'
    STATUS_CHOICES = [
        (DRAFT, 'Draft'),
        (SENT, 'Sent'),
        (PAID, 'Paid'),
        (PARTIAL, 'Partially paid'),
        (OVERDUE, 'Overdue'),
        (CANCELLED, 'Cancelled'),
    ]
    invoice_number = models.CharField(max_length=20, unique=True)
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='invoices')
    visit = models.ForeignKey(Visit, null=True, blank=True, on_delete=models.SET_NULL, related_name='invoices')
    service_description = models.CharField(max_length=255)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    tax_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    total_amount = models.DecimalField(max_digits=10, decimal_places=2)
    amount_paid = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=DRAFT, db_index=True)
    invoice_date = models.DateField(default=timezone.localdate)
    due_date = models.DateField()
    payment_method = models.CharField(max_length=30, blank=True)
    payment_date = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='+'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-invoice_date', '-id']

    def __str__(self) -> str:
        return self.invoice_number

    @property
    def amount_due(self) -> Decimal:
        return self.total_amount - self.amount_paid


class Payment(models.Model):
    METHOD_CHOICES = [
        ('CASH', 'Cash'),
        ('CARD', 'Card'),
        ('CHECK', 'Check'),
        ('BANK_TRANSFER', 'Bank transfer'),
        ('OTHER', 'Other'),
    ]
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='payments')
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    payment_method = models.CharField(max_length=30, choices=METHOD_CHOICES, default='OTHER')
    payment_date = models.DateField(default=timezone.localdate)
    reference = models.CharField(max_length=100, blank=True)
    recorded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='+'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.amount} on {self.invoice_id}"


# ---------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------
def _document_upload_to(instance: 'Document', filename: str) -> str:
    return f"documents/{timezone.now():%Y/%m}/{filename}"


class Document(models.Model):
    CATEGORY_CHOICES = [
        ('lab_result', 'Lab result'),
        ('meal_plan', 'Meal plan'),
        ('prescription', 'Prescription'),
        ('report', 'Report'),
        ('other', 'Other'),
    ]
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='documents')
    visit = models.ForeignKey(Visit, null=True, blank=True, on_delete=models.SET_NULL, related_name='documents')
    file = models.FileField(upload_to=_document_upload_to, blank=True)
    file_name = models.CharField(max_length=255)
    mime_type = models.CharField(max_length=100, blank=True)
    file_size = models.PositiveIntegerField(default=0)
    category = models.CharField(max_length=30, choices=CATEGORY_CHOICES, default='other')
    description = models.TextField(blank=True)
    uploaded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='+'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self) -> str:
        return self.file_name


# ---------------------------------------------------------------------
# Recipes
# ---------------------------------------------------------------------
class Ingredient(models.Model):
    name = models.CharField(max_length=200, unique=True)
    category = models.CharField(max_length=50, blank=True, db_index=True)
    default_unit = models.CharField(max_length=20, default='g')
    # keys: calories, protein, carbs, fat, fiber, sodium, sugar
    nutrition_per_100g = models.JSONField(default=dict, blank=True)
    allergens = models.JSONField(default=list, blank=True)
    is_active = models.BooleanField(default=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='+'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']

    def __str__(self) -> str:
        return self.name


class Recipe(models.Model):
    DRAFT = 'draft'
    PUBLISHED = 'published'
    ARCHIVED = 'archived'
    STATUS_CHOICES = [(DRAFT, 'Draft'), (PUBLISHED, 'Published'), (ARCHIVED, 'Archived')]
    DIFFICULTY_CHOICES = [('easy', 'Easy'), ('medium', 'Medium'), ('hard', 'Hard')]

    title = models.CharField(max_length=200)
    slug = models.SlugField(max_length=220, unique=True)
    description = models.TextField(blank=True)
    instructions = models.TextField(blank=True)
    prep_time_minutes = models.PositiveIntegerField(null=True, blank=True)
    cook_time_minutes = models.PositiveIntegerField(null=True, blank=True)
    servings = models.PositiveIntegerField(default=1)
    difficulty = models.CharField(max_length=10, choices=DIFFICULTY_CHOICES, default='medium')
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=DRAFT, db_index=True)
    tags = models.JSONField(default=list, blank=True)
    nutrition_per_serving = models.JSONField(default=dict, blank=True)
    published_at = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='recipes'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self) -> str:
        return self.title


class RecipeIngredient(models.Model):
    recipe = models.ForeignKey(Recipe, on_delete=models.CASCADE, related_name='items')
    ingredient = models.ForeignKey(Ingredient, on_delete=models.PROTECT, related_name='recipe_items')
    quantity = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    unit = models.CharField(max_length=20, blank=True)
    notes = models.CharField(max_length=255, blank=True)
    is_optional = models.BooleanField(default=False)
    display_order = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['display_order', 'id']

    def __str__(self) -> str:
        return f"{self.quantity or ''} {self.unit} {self.ingredient}".strip()


# ---------------------------------------------------------------------
# Custom fields
# ---------------------------------------------------------------------
class CustomFieldCategory(models.Model):
    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True)
    display_order = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['display_order', 'name']

    def __str__(self) -> str:
        return self.name


class CustomFieldDefinition(models.Model):
    TEXT = 'text'
    TEXTAREA = 'textarea'
    NUMBER = 'number'
    DATE = 'date'
    SELECT = 'select'
    BOOLEAN = 'boolean'
    CALCULATED = 'calculated'
    SEPARATOR = 'separator'
    FIELD_TYPE_CHOICES = [
        (TEXT, 'Text'),
        (TEXTAREA, 'Text area'),
        (NUMBER, 'Number'),
        (DATE, 'Date'),
        (SELECT, 'Select'),
        (BOOLEAN, 'Boolean'),
        (CALCULATED, 'Calculated'),
        (SEPARATOR, 'Separator'),
    ]
    category = models.ForeignKey(CustomFieldCategory, on_delete=models.CASCADE, related_name='definitions')
    field_name = models.CharField(max_length=100, unique=True)
    field_label = models.CharField(max_length=200)
    field_type = models.CharField(max_length=20, choices=FIELD_TYPE_CHOICES)
    is_required = models.BooleanField(default=False)
    validation_rules = models.JSONField(default=dict, blank=True)
    select_options = models.JSONField(null=True, blank=True)
    allow_multiple = models.BooleanField(default=False)
    help_text = models.CharField(max_length=255, blank=True)
    display_order = models.PositiveIntegerField(default=0)
    formula = models.TextField(blank=True)
    dependencies = models.JSONField(default=list, blank=True)
    decimal_places = models.PositiveSmallIntegerField(default=2)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['category__display_order', 'display_order', 'id']

    def __str__(self) -> str:
        return self.field_name

    @property
    def is_calculated(self) -> bool:
        return self.field_type == self.CALCULATED


class PatientCustomFieldValue(models.Model):
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='custom_values')
    definition = models.ForeignKey(CustomFieldDefinition, on_delete=models.CASCADE, related_name='values')
    value = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='+'
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = [('patient', 'definition')]

    def __str__(self) -> str:
        return f"{self.definition_id}={self.value!r}"


# ---------------------------------------------------------------------
# Measures
# ---------------------------------------------------------------------
class MeasureDefinition(models.Model):
    NUMERIC = 'numeric'
    TEXT = 'text'
    BOOLEAN = 'boolean'
    CALCULATED = 'calculated'
    TYPE_CHOICES = [
        (NUMERIC, 'Numeric'),
        (TEXT, 'Text'),
        (BOOLEAN, 'Boolean'),
        (CALCULATED, 'Calculated'),
    ]
    CATEGORY_CHOICES = [
        ('anthropometric', 'Anthropometric'),
        ('vitals', 'Vitals'),
        ('lab_results', 'Lab results'),
        ('symptoms', 'Symptoms'),
        ('lifestyle', 'Lifestyle'),
        ('other', 'Other'),
    ]
    name = models.CharField(max_length=100, unique=True)
    display_name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    category = models.CharField(max_length=30, choices=CATEGORY_CHOICES, default='other')
    measure_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default=NUMERIC)
    unit = models.CharField(max_length=20, blank=True)
    min_value = models.DecimalField(max_digits=12, decimal_places=4, null=True, blank=True)
    max_value = models.DecimalField(max_digits=12, decimal_places=4, null=True, blank=True)
    decimal_places = models.PositiveSmallIntegerField(default=2)
    # outside the normal range -> warning, beyond a threshold -> critical
    normal_range_min = models.DecimalField(max_digits=12, decimal_places=4, null=True, blank=True)
    normal_range_max = models.DecimalField(max_digits=12, decimal_places=4, null=True, blank=True)
    alert_threshold_min = models.DecimalField(max_digits=12, decimal_places=4, null=True, blank=True)
    alert_threshold_max = models.DecimalField(max_digits=12, decimal_places=4, null=True, blank=True)
    enable_alerts = models.BooleanField(default=False)
    formula = models.TextField(blank=True)
    dependencies = models.JSONField(default=list, blank=True)
    display_order = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    is_system = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['category', 'display_order', 'name']

    def __str__(self) -> str:
        return self.name


class PatientMeasure(models.Model):
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='measures')
    definition = models.ForeignKey(MeasureDefinition, on_delete=models.CASCADE, related_name='values')
    visit = models.ForeignKey(Visit, null=True, blank=True, on_delete=models.SET_NULL, related_name='measures')
    measured_at = models.DateTimeField(default=timezone.now, db_index=True)
    numeric_value = models.DecimalField(max_digits=14, decimal_places=4, null=True, blank=True)
    text_value = models.TextField(blank=True)
    boolean_value = models.BooleanField(null=True, blank=True)
    is_calculated = models.BooleanField(default=False)
    notes = models.TextField(blank=True)
    recorded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='+'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-measured_at', '-id']
        indexes = [models.Index(fields=['patient', 'definition', 'measured_at'])]

    def __str__(self) -> str:
        return f"{self.definition_id}@{self.measured_at:%Y-%m-%d}={self.value!r}"

    @property
    def value(self):
        if self.numeric_value is not None:
            return self.numeric_value
        if self.boolean_value is not None:
            return self.boolean_value
        return self.text_value or None


class MeasureAlert(models.Model):
    WARNING = 'warning'
    CRITICAL = 'critical'
    SEVERITY_CHOICES = [
        (WARNING, 'Warning'),
        (CRITICAL, 'Critical'),
    ]
    TYPE_CHOICES = [
        ('below_critical', 'Below critical threshold'),
        ('above_critical', 'Above critical threshold'),
        ('below_normal', 'Below normal range'),
        ('above_normal', 'Above normal range'),
    ]
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='measure_alerts')
    measure = models.ForeignKey(PatientMeasure, on_delete=models.CASCADE, related_name='alerts')
    definition = models.ForeignKey(MeasureDefinition, on_delete=models.CASCADE, related_name='alerts')
    severity = models.CharField(max_length=10, choices=SEVERITY_CHOICES, db_index=True)
    alert_type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    value = models.DecimalField(max_digits=14, decimal_places=4)
    threshold_value = models.DecimalField(max_digits=12, decimal_places=4, null=True, blank=True)
    message = models.TextField()
    email_sent = models.BooleanField(default=False)
    acknowledged_at = models.DateTimeField(null=True, blank=True, db_index=True)
    acknowledged_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='+'
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [models.Index(fields=['patient', 'definition', 'created_at'])]

    def __str__(self) -> str:
        return f"{self.severity}:{self.alert_type} ({self.patient_id})"


# ---------------------------------------------------------------------
# E-mail
# ---------------------------------------------------------------------
class EmailTemplate(models.Model):
    CATEGORY_CHOICES = [
        ('invoice', 'Invoice'),
        ('appointment_reminder', 'Appointment reminder'),
        ('followup', 'Follow-up'),
        ('document_share', 'Document share'),
        ('password_reset', 'Password reset'),
        ('general', 'General'),
    ]
    slug = models.SlugField(max_length=100, unique=True)
    name = models.CharField(max_length=200)
    category = models.CharField(max_length=30, choices=CATEGORY_CHOICES, default='general', db_index=True)
    description = models.CharField(max_length=255, blank=True)
    subject = models.CharField(max_length=255)
    body_html = models.TextField(blank=True)
    body_text = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)
    is_system = models.BooleanField(default=False)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='+'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return self.slug


class EmailLog(models.Model):
    SENT = 'SENT'
    FAILED = 'FAILED'
    STATUS_CHOICES = [(SENT, 'Sent'), (FAILED, 'Failed')]

    template = models.ForeignKey(EmailTemplate, null=True, blank=True, on_delete=models.SET_NULL, related_name='logs')
    email_type = models.CharField(max_length=30, db_index=True)
    patient = models.ForeignKey(Patient, null=True, blank=True, on_delete=models.SET_NULL, related_name='email_logs')
    visit = models.ForeignKey(Visit, null=True, blank=True, on_delete=models.SET_NULL, related_name='email_logs')
    invoice = models.ForeignKey(Invoice, null=True, blank=True, on_delete=models.SET_NULL, related_name='email_logs')
    to_email = models.EmailField()
    subject = models.CharField(max_length=255)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=SENT)
    error_message = models.TextField(blank=True)
    sent_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='+'
    )
    sent_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ['-sent_at']

    def __str__(self) -> str:
        return f"{self.email_type} -> {self.to_email} ({self.status})"


# ---------------------------------------------------------------------
# System
# ---------------------------------------------------------------------
class SystemSetting(models.Model):
    """Key/value settings editable at runtime (e.g. the AI provider)."""
    key = models.CharField(max_length=100, unique=True)
    value = models.TextField(blank=True)
    description = models.CharField(max_length=255, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return self.key

    @classmethod
    def get_value(cls, key: str, default: str | None = None) -> str | None:
        row = cls.objects.filter(key=key).first()
        return row.value if row is not None and row.value != '' else default

    @classmethod
    def set_value(cls, key: str, value: str, description: str = '') -> 'SystemSetting':
        defaults = {'value': value}
        if description:
            defaults['description'] = description
        row, _ = cls.objects.update_or_create(key=key, defaults=defaults)
        return row


class ScheduledJob(models.Model):
    name = models.CharField(max_length=100, unique=True)
    description = models.CharField(max_length=255, blank=True)
    cron = models.CharField(max_length=100)
    is_enabled = models.BooleanField(default=True)
    last_run_at = models.DateTimeField(null=True, blank=True)
    last_status = models.CharField(max_length=20, blank=True)
    last_error = models.TextField(blank=True)
    last_result = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    run_count = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']

    def __str__(self) -> str:
        return f"{self.name} [{self.cron}]"


class AuditLog(models.Model):
    SUCCESS = 'SUCCESS'
    FAILURE = 'FAILURE'

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='audit_logs'
    )
    username = models.CharField(max_length=150, blank=True)
    action = models.CharField(max_length=50, db_index=True)
    resource_type = models.CharField(max_length=50, blank=True, db_index=True)
    resource_id = models.CharField(max_length=64, blank=True)
    changes = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.CharField(max_length=255, blank=True)
    status = models.CharField(max_length=10, default=SUCCESS)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ['-created_at', '-id']

    def __str__(self) -> str:
        return f"{self.action} {self.resource_type}:{self.resource_id} by {self.username or '-'}"
