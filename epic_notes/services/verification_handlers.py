# epic_notes/services/verification_handlers.py
from __future__ import annotations

from epic_notes.services import auth_service, email_change_service, onboarding_service, password_reset_service
from epic_notes.services.verification_registry import VerificationHandlerRegistry, VerificationType


def register_default_handlers(registry: VerificationHandlerRegistry) -> VerificationHandlerRegistry:
    """Einmal beim Start: welcher Flow übernimmt nach einem gültigen Code."""
    registry.register(VerificationType.ONBOARDING, onboarding_service.handle_verification)
    registry.register(VerificationType.FORGOT_PASSWORD, password_reset_service.handle_verification)
    registry.register(VerificationType.CHANGE_EMAIL, email_change_service.handle_verification)
    registry.register(VerificationType.TWO_FA, auth_service.handle_verification)
    return registry
