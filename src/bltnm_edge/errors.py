"""Error codes, localized messages and the JSON error envelope."""

from __future__ import annotations

from fastapi import HTTPException, Request

from bltnm_edge.config import Settings

LANGUAGES = ("en", "ar")

ERROR_MESSAGES: dict[str, dict[str, str]] = {
    "TOKEN_MISSING": {
        "en": "CSRF token missing",
        "ar": "رمز الحماية مفقود",
    },
    "TOKEN_INVALID": {
        "en": "Invalid CSRF token",
        "ar": "رمز الحماية غير صالح",
    },
    "TOKEN_REQUIRED": {
        "en": "Access token is required",
        "ar": "رمز الدخول مطلوب",
    },
    "PERMISSION_DENIED": {
        "en": "Permission denied",
        "ar": "ليس لديك صلاحية للوصول إلى هذا المحتوى",
    },
    "SERVER_ERROR": {
        "en": "Internal server error occurred",
        "ar": "حدث خطأ في الخادم الداخلي",
    },
    "RATE_LIMITED": {
        "en": "Too many requests",
        "ar": "عدد كبير جداً من الطلبات",
    },
    "NOT_FOUND": {
        "en": "Not found",
        "ar": "غير موجود",
    },
    "SIGNOUT_FAILED": {
        "en": "Failed to sign out",
        "ar": "فشل في تسجيل الخروج",
    },
    "WEBHOOK_VERIFICATION_FAILED": {
        "en": "Webhook verification failed",
        "ar": "فشل في التحقق من صحة webhook",
    },
}

ERROR_DETAILS: dict[str, dict[str, str]] = {
    "TOKEN_MISSING": {
        "en": "CSRF token is required for this request",
        "ar": "رمز الحماية مطلوب لهذا الطلب",
    },
    "TOKEN_INVALID": {
        "en": "The provided CSRF token is invalid or expired",
        "ar": "رمز الحماية المقدم غير صالح أو منتهي الصلاحية",
    },
    "TOKEN_REQUIRED": {
        "en": "Access token must be provided in the request header",
        "ar": "يجب تقديم رمز الدخول في رأس الطلب",
    },
    "PERMISSION_DENIED": {
        "en": "Please sign in as an admin to access this content",
        "ar": "يرجى تسجيل الدخول كمدير للوصول إلى هذا المحتوى",
    },
    "SERVER_ERROR": {
        "en": "Please try again later",
        "ar": "يرجى المحاولة مرة أخرى لاحقاً",
    },
    "RATE_LIMITED": {
        "en": "Please wait before trying again",
        "ar": "يرجى الانتظار قبل المحاولة مرة أخرى",
    },
    "SIGNOUT_FAILED": {
        "en": "Error occurred during sign out, please try again",
        "ar": "حدث خطأ أثناء تسجيل الخروج، يرجى المحاولة مرة أخرى",
    },
    "WEBHOOK_VERIFICATION_FAILED": {
        "en": "Failed to verify the data sent from Polar",
        "ar": "فشل في التحقق من صحة البيانات المرسلة من Polar",
    },
}


def _normalize(language: str) -> str:
    return language if language in LANGUAGES else "en"


def error_message(code: str, language: str = "en") -> str:
    """Localized message for *code*; unknown codes use SERVER_ERROR's."""
    language = _normalize(language)
    entry = ERROR_MESSAGES.get(code, ERROR_MESSAGES["SERVER_ERROR"])
    return entry[language]


def error_details(code: str, language: str = "en") -> str:
    entry = ERROR_DETAILS.get(code)
    if entry is None:
        return ""
    return entry[_normalize(language)]


def request_language(request: Request) -> str:
    accept = request.headers.get("accept-language", "").strip().lower()
    for language in LANGUAGES:
        if accept.startswith(language):
            return language
    return _normalize(Settings.DEFAULT_LANGUAGE)


def error_envelope(code: str, language: str = "en") -> dict[str, str]:
    return {
        "error": error_message(code, language),
        "code": code,
        "details": error_details(code, language),
    }


class ApiError(HTTPException):
    """HTTP error that renders as the localized ``{error, code, details}`` envelope."""

    def __init__(
        self,
        status_code: int,
        code: str,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=code, headers=headers)
        self.code = code
