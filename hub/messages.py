"""
User-facing messages.

Every error or notice shown to a user is looked up here by key so that the
HTTP layer never leaks raw provider text. Polish is the product default.
"""

import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)


MESSAGES: Dict[str, Dict[str, str]] = {
    "pl": {
        "invalid_credentials": "Nieprawidłowy email/login lub hasło",
        "rate_limited": "Zbyt wiele prób. Spróbuj ponownie za chwilę",
        "email_unconfirmed": "Adres email nie został potwierdzony",
        "session_expired": "Sesja wygasła. Zaloguj się ponownie",
        "network_error": "Błąd połączenia. Spróbuj ponownie",
        "no_membership": "Twoje konto nie jest przypisane do żadnej firmy. Skontaktuj się z przełożonym",
        "inactive_account": "Twoje konto zostało dezaktywowane",
        "directory_unavailable": "Nie udało się pobrać danych konta. Niektóre funkcje mogą być niedostępne",
        "auth_error": "Wystąpił błąd logowania",
        "storage_error": "Nie udało się zapisać sesji",
        "internal_error": "Wystąpił nieoczekiwany błąd",
        "passwords_mismatch": "Hasła nie są identyczne",
        "password_too_short": "Hasło musi mieć co najmniej {min_length} znaków",
        "password_needs_uppercase": "Hasło musi zawierać co najmniej jedną wielką literę",
        "password_needs_digit_or_special": "Hasło musi zawierać cyfrę lub znak specjalny",
        "pin_format": "PIN musi składać się z dokładnie 6 cyfr",
        "pin_too_simple": "PIN jest zbyt prosty",
        "password_reused": "Nowe hasło musi różnić się od poprzednich",
        "current_password_invalid": "Obecne hasło jest nieprawidłowe",
        "staff_reset_forbidden": "Personel nie może resetować hasła samodzielnie. Skontaktuj się z przełożonym",
        "terms_required": "Musisz zaakceptować regulamin",
        "oauth_provider_unsupported": "Nieobsługiwany dostawca logowania",
        "reset_link_invalid": "Link resetujący jest nieprawidłowy lub wygasł",
        "not_authenticated": "Musisz być zalogowany",
        "reset_email_sent": "Sprawdź skrzynkę email, aby zresetować hasło",
        "signup_confirm_email": "Sprawdź skrzynkę email, aby potwierdzić konto",
        "credentials_updated": "Hasło zostało zmienione",
        "signed_out": "Wylogowano",
    },
    "en": {
        "invalid_credentials": "Invalid email/login or password",
        "rate_limited": "Too many attempts. Please try again shortly",
        "email_unconfirmed": "Email address has not been confirmed",
        "session_expired": "Your session has expired. Please sign in again",
        "network_error": "Connection error. Please try again",
        "no_membership": "Your account is not assigned to any company. Contact your supervisor",
        "inactive_account": "Your account has been deactivated",
        "directory_unavailable": "Account details could not be loaded. Some features may be unavailable",
        "auth_error": "Sign-in failed",
        "storage_error": "The session could not be stored",
        "internal_error": "An unexpected error occurred",
        "passwords_mismatch": "Passwords do not match",
        "password_too_short": "Password must be at least {min_length} characters long",
        "password_needs_uppercase": "Password must contain at least one uppercase letter",
        "password_needs_digit_or_special": "Password must contain a digit or a special character",
        "pin_format": "PIN must be exactly 6 digits",
        "pin_too_simple": "PIN is too simple",
        "password_reused": "The new password must differ from previous ones",
        "current_password_invalid": "Current password is incorrect",
        "staff_reset_forbidden": "Staff cannot reset their password themselves. Contact your supervisor",
        "terms_required": "You must accept the terms of service",
        "oauth_provider_unsupported": "Unsupported sign-in provider",
        "reset_link_invalid": "The reset link is invalid or has expired",
        "not_authenticated": "You must be signed in",
        "reset_email_sent": "Check your inbox to reset your password",
        "signup_confirm_email": "Check your inbox to confirm your account",
        "credentials_updated": "Password changed",
        "signed_out": "Signed out",
    },
}

FALLBACK_LOCALE = "pl"


def get_message(key: str, locale: Optional[str] = None, **params) -> str:
    """
    Look up a localized message.

    Args:
        key: Message key (usually an error code)
        locale: 'pl' or 'en'; unknown locales fall back to Polish
        **params: Values substituted into the message template

    Returns:
        Localized text; the generic error text when the key is unknown.
    """
    catalogue = MESSAGES.get((locale or FALLBACK_LOCALE).lower(), MESSAGES[FALLBACK_LOCALE])
    template = catalogue.get(key)
    if template is None:
        logger.debug(f"No message for key '{key}'")
        template = catalogue["auth_error"]
    if params:
        return template.format(**params)
    return template
