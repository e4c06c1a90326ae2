"""
Django admin registrations for the practice models.
"""
from django.contrib import admin

from .models import (
    ApiKey,
    AuditLog,
    CustomFieldCategory,
    CustomFieldDefinition,
    Document,
    EmailLog,
    EmailTemplate,
    Ingredient,
    Invoice,
    MeasureAlert,
    MeasureDefinition,
    Patient,
    PatientDietitian,
    PatientMeasure,
    Payment,
    Permission,
    Recipe,
    RecipeIngredient,
    Role,
    ScheduledJob,
    SystemSetting,
    Theme,
    User,
    Visit,
)


@admin.register(Permission)
class PermissionAdmin(admin.ModelAdmin):
    list_display = ('code', 'resource', 'action', 'is_active')
    list_filter = ('resource', 'is_active')
    search_fields = ('code',)


@admin.register(Role)
class RoleAdmin(admin.ModelAdmin):
    list_display = ('name', 'is_active', 'is_system')
    filter_horizontal = ('permissions',)


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'email', 'role', 'is_active', 'failed_login_attempts', 'locked_until')
    list_filter = ('role', 'is_active')
    search_fields = ('username', 'email', 'first_name', 'last_name')
    exclude = ('password', 'password_reset_token')


@admin.register(ApiKey)
class ApiKeyAdmin(admin.ModelAdmin):
    list_display = ('name', 'prefix', 'user', 'is_active', 'expires_at', 'usage_count', 'last_used_at')
    readonly_fields = ('key_hash', 'prefix', 'usage_count', 'last_used_at')


class PatientDietitianInline(admin.TabularInline):
    model = PatientDietitian
    extra = 0


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ('id', 'last_name', 'first_name', 'email', 'is_active', 'created_at')
    list_filter = ('is_active',)
    search_fields = ('first_name', 'last_name', 'email')
    inlines = [PatientDietitianInline]


@admin.register(Visit)
class VisitAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'dietitian', 'visit_date', 'visit_type', 'status')
    list_filter = ('status', 'visit_type')


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ('invoice_number', 'patient', 'total_amount', 'amount_paid', 'status', 'due_date')
    list_filter = ('status',)
    search_fields = ('invoice_number',)
    inlines = [PaymentInline]


@admin.register(Document)
class DocumentAdmin(admin.ModelAdmin):
    list_display = ('file_name', 'patient', 'category', 'file_size', 'created_at')
    list_filter = ('category',)


class RecipeIngredientInline(admin.TabularInline):
    model = RecipeIngredient
    extra = 0


@admin.register(Recipe)
class RecipeAdmin(admin.ModelAdmin):
    list_display = ('title', 'slug', 'status', 'servings', 'created_at')
    list_filter = ('status', 'difficulty')
    inlines = [RecipeIngredientInline]


@admin.register(Ingredient)
class IngredientAdmin(admin.ModelAdmin):
    list_display = ('name', 'category', 'default_unit', 'is_active')
    search_fields = ('name',)


@admin.register(CustomFieldCategory)
class CustomFieldCategoryAdmin(admin.ModelAdmin):
    list_display = ('name', 'display_order', 'is_active')


@admin.register(CustomFieldDefinition)
class CustomFieldDefinitionAdmin(admin.ModelAdmin):
    list_display = ('field_name', 'field_label', 'field_type', 'category', 'is_active')
    list_filter = ('field_type', 'category')


@admin.register(MeasureDefinition)
class MeasureDefinitionAdmin(admin.ModelAdmin):
    list_display = ('name', 'display_name', 'measure_type', 'unit', 'is_system', 'is_active')
    list_filter = ('measure_type', 'category')


@admin.register(PatientMeasure)
class PatientMeasureAdmin(admin.ModelAdmin):
    list_display = ('patient', 'definition', 'measured_at', 'numeric_value', 'is_calculated')
    list_filter = ('definition',)


@admin.register(MeasureAlert)
class MeasureAlertAdmin(admin.ModelAdmin):
    list_display = ('patient', 'definition', 'severity', 'alert_type', 'created_at', 'acknowledged_at')
    list_filter = ('severity', 'alert_type')


@admin.register(EmailTemplate)
class EmailTemplateAdmin(admin.ModelAdmin):
    list_display = ('slug', 'name', 'category', 'is_active', 'is_system')


@admin.register(EmailLog)
class EmailLogAdmin(admin.ModelAdmin):
    list_display = ('email_type', 'to_email', 'status', 'sent_at')
    list_filter = ('status', 'email_type')


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ('created_at', 'username', 'action', 'resource_type', 'resource_id', 'status')
    list_filter = ('action', 'resource_type', 'status')
    search_fields = ('username', 'resource_id')


admin.site.register(Theme)
admin.site.register(SystemSetting)
admin.site.register(ScheduledJob)
