"""
URL mappings for the practice API.

Every route is named after its view function so tests and clients can
``reverse()`` them.  Trailing slashes are omitted.
"""
from django.urls import path

from .auth_views import (
    api_key_detail_view,
    api_keys_view,
    change_password_view,
    forgot_password_view,
    login_view,
    logout_view,
    me_view,
    refresh_view,
    reset_password_view,
)
from .views import (
    alerts,
    billing,
    custom_fields,
    documents,
    email_templates,
    followups,
    health,
    measures,
    patients,
    portal,
    recipes,
    system,
    users,
    visits,
)


def route(pattern, view):
    # @api_view wraps the function; the original name lives on the view class
    return path(pattern, view, name=getattr(view, 'cls', view).__name__)


urlpatterns = [
    path('healthz', health.healthz, name='healthz'),

    # Authentication
    route('api/auth/login', login_view),
    route('api/auth/refresh', refresh_view),
    route('api/auth/logout', logout_view),
    route('api/auth/me', me_view),
    route('api/auth/change-password', change_password_view),
    route('api/auth/forgot-password', forgot_password_view),
    route('api/auth/reset-password', reset_password_view),
    route('api/auth/api-keys', api_keys_view),
    route('api/auth/api-keys/<int:pk>', api_key_detail_view),

    # Users, roles and permissions
    route('api/users', users.users_view),
    route('api/users/dietitians', users.dietitians_view),
    route('api/users/<int:pk>', users.user_detail_view),
    route('api/users/<int:pk>/toggle-active', users.user_toggle_active_view),
    route('api/users/<int:pk>/unlock', users.user_unlock_view),
    route('api/users/me/theme', system.my_theme_view),
    route('api/roles', users.roles_view),
    route('api/roles/<int:pk>', users.role_detail_view),
    route('api/roles/<int:pk>/permissions', users.role_permissions_view),
    route('api/permissions', users.permissions_view),

    # Patients
    route('api/patients', patients.patients_view),
    route('api/patients/<int:pk>', patients.patient_detail_view),
    route('api/patients/<int:pk>/dietitians', patients.patient_dietitians_view),
    route('api/patients/<int:pk>/dietitians/<int:dietitian_id>', patients.patient_dietitian_detail_view),
    route('api/patients/<int:pk>/portal-account', patients.patient_portal_account_view),
    route('api/patients/<int:pk>/custom-fields', patients.patient_custom_fields_view),
    route('api/patients/<int:pk>/export', patients.patient_export_view),
    route('api/patients/<int:pk>/alerts/acknowledge', alerts.patient_alerts_acknowledge_view),
    route('api/patients/<int:pk>/measures/<int:measure_id>/history', measures.patient_measure_history_view),
    route('api/patients/<int:pk>/measures/recalculate', measures.patient_measures_recalculate_view),

    # Visits
    route('api/visits', visits.visits_view),
    route('api/visits/upcoming', visits.upcoming_visits_view),
    route('api/visits/<int:pk>', visits.visit_detail_view),
    route('api/visits/<int:pk>/complete', visits.visit_complete_view),

    # Billing
    route('api/billing', billing.invoices_view),
    route('api/billing/stats', billing.invoice_stats_view),
    route('api/billing/<int:pk>', billing.invoice_detail_view),
    route('api/billing/<int:pk>/send', billing.invoice_send_view),
    route('api/billing/<int:pk>/payments', billing.invoice_payments_view),
    route('api/billing/<int:pk>/mark-paid', billing.invoice_mark_paid_view),

    # Documents
    route('api/documents', documents.documents_view),
    route('api/documents/<int:pk>', documents.document_detail_view),
    route('api/documents/<int:pk>/download', documents.document_download_view),

    # Recipes and ingredients
    route('api/ingredients', recipes.ingredients_view),
    route('api/ingredients/<int:pk>', recipes.ingredient_detail_view),
    route('api/ingredients/<int:pk>/duplicate', recipes.ingredient_duplicate_view),
    route('api/recipes', recipes.recipes_view),
    route('api/recipes/<int:pk>', recipes.recipe_detail_view),
    route('api/recipes/<int:pk>/status', recipes.recipe_status_view),
    route('api/recipes/<int:pk>/duplicate', recipes.recipe_duplicate_view),

    # Custom fields
    route('api/custom-fields/categories', custom_fields.categories_view),
    route('api/custom-fields/categories/reorder', custom_fields.categories_reorder_view),
    route('api/custom-fields/categories/<int:pk>', custom_fields.category_detail_view),
    route('api/custom-fields/definitions', custom_fields.definitions_view),
    route('api/custom-fields/definitions/reorder', custom_fields.definitions_reorder_view),
    route('api/custom-fields/definitions/<int:pk>', custom_fields.definition_detail_view),
    route('api/custom-fields/validate-formula', custom_fields.field_formula_validate_view),

    # Measures
    route('api/measures/definitions', measures.measure_definitions_view),
    route('api/measures/definitions/<int:pk>', measures.measure_definition_detail_view),
    route('api/measures', measures.patient_measures_view),
    route('api/measures/<int:pk>', measures.patient_measure_detail_view),
    route('api/formulas/validate', measures.formula_validate_view),
    route('api/formulas/preview', measures.formula_preview_view),
    route('api/alerts', alerts.alerts_view),
    route('api/alerts/<int:pk>/acknowledge', alerts.alert_acknowledge_view),

    # E-mail templates and log
    route('api/email-templates', email_templates.templates_view),
    route('api/email-templates/variables', email_templates.template_variables_view),
    route('api/email-templates/<int:pk>', email_templates.template_detail_view),
    route('api/email-templates/<int:pk>/preview', email_templates.template_preview_view),
    route('api/email-logs', email_templates.email_logs_view),

    # AI follow-ups
    route('api/followups/generate', followups.followup_generate_view),
    route('api/followups/send', followups.followup_send_view),
    route('api/ai/config', followups.ai_config_view),
    route('api/ai/providers', followups.ai_providers_view),

    # System
    route('api/themes', system.themes_view),
    route('api/themes/<int:pk>', system.theme_detail_view),
    route('api/themes/<int:pk>/set-default', system.theme_set_default_view),
    route('api/scheduler/jobs', system.jobs_view),
    route('api/scheduler/jobs/<int:pk>', system.job_detail_view),
    route('api/scheduler/jobs/<int:pk>/run', system.job_run_view),
    route('api/audit-logs', system.audit_logs_view),
    route('api/dashboard', system.dashboard_view),

    # Patient portal
    route('api/portal/me', portal.portal_profile_view),
    route('api/portal/visits', portal.portal_visits_view),
    route('api/portal/measures', portal.portal_measures_view),
]
