"""
Input validation utilities for domains, emails and phone numbers,
plus coercion helpers for the loosely typed values the registrar returns
"""

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Tuple


class ValidationError(Exception):
    """Custom exception for validation errors"""
    pass


class DomainValidator:
    """Validator for domain names"""

    # One or more labels followed by an alphabetic TLD label
    DOMAIN_REGEX = re.compile(
        r'^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?(?:\.[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?)*\.[a-z]{2,}$'
    )

    @classmethod
    def validate(cls, domain: str) -> str:
        """
        Validate a registrable domain name.

        Args:
            domain: Domain name to validate

        Returns:
            Cleaned domain name (lowercase, stripped)

        Raises:
            ValidationError: If domain is invalid
        """
        if not domain or not domain.strip():
            raise ValidationError("Domain name is required")

        domain = domain.strip().lower()
        domain = re.sub(r'^https?://', '', domain)
        domain = domain.rstrip('/').rstrip('.')

        if len(domain) > 253:  # RFC 1035
            raise ValidationError("Domain name too long (max 253 characters)")

        if not cls.DOMAIN_REGEX.match(domain):
            raise ValidationError(f"Invalid domain name format: {domain}")

        sld, _ = cls.split(domain)
        if len(sld) < 2:
            raise ValidationError("Domain name too short (minimum 2 characters)")
        if len(sld) > 63:
            raise ValidationError("Domain name too long (maximum 63 characters)")
        if '--' in sld and not sld.startswith('xn--'):
            raise ValidationError("Domain name cannot contain consecutive hyphens")

        return domain

    @classmethod
    def split(cls, domain: str) -> Tuple[str, str]:
        """
        Split a domain into its registrable label and TLD.

        'example.co.uk' -> ('example', 'co.uk')
        """
        domain = domain.strip().lower()
        if '.' not in domain:
            return domain, ""
        sld, tld = domain.split('.', 1)
        return sld, tld


class EmailValidator:
    """Validator for email addresses"""

    EMAIL_REGEX = re.compile(
        r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    )

    @classmethod
    def validate(cls, email: str) -> str:
        """
        Validate an email address.

        Returns:
            Cleaned email address (lowercase, stripped)

        Raises:
            ValidationError: If email is invalid
        """
        if not email:
            raise ValidationError("Email address cannot be empty")

        email = email.strip().lower()

        if not cls.EMAIL_REGEX.match(email):
            raise ValidationError(f"Invalid email format: {email}")

        return email


class PhoneValidator:
    """Validator for phone numbers (ResellerClub takes country code and number separately)"""

    PHONE_REGEX = re.compile(r'^\d{4,15}$')
    COUNTRY_CODE_REGEX = re.compile(r'^\d{1,4}$')

    @classmethod
    def validate(cls, phone: str) -> str:
        """
        Validate and clean a subscriber number.

        Raises:
            ValidationError: If phone number is invalid
        """
        if not phone:
            raise ValidationError("Phone number cannot be empty")

        phone = re.sub(r'[\s\-\(\)\.]+', '', str(phone).strip())

        if not cls.PHONE_REGEX.match(phone):
            raise ValidationError(f"Invalid phone number: {phone}")

        return phone

    @classmethod
    def validate_country_code(cls, code: str) -> str:
        code = str(code).strip().lstrip('+')
        if not cls.COUNTRY_CODE_REGEX.match(code):
            raise ValidationError(f"Invalid phone country code: {code}")
        return code


def validate_domain(domain: str) -> str:
    """Convenience function for domain validation"""
    return DomainValidator.validate(domain)


def split_domain(domain: str) -> Tuple[str, str]:
    """Convenience function returning (sld, tld)"""
    return DomainValidator.split(domain)


def validate_email(email: str) -> str:
    """Convenience function for email validation"""
    return EmailValidator.validate(email)


def validate_phone(phone: str) -> str:
    """Convenience function for phone validation"""
    return PhoneValidator.validate(phone)


def normalize_tld(tld: str) -> str:
    """'.COM ' -> 'com'"""
    return tld.strip().lower().lstrip('.')


# ---------------------------------------------------------------------------
# Coercion of remote values
# ---------------------------------------------------------------------------

def to_bool(value: Any) -> bool:
    """Registrar flags arrive as booleans or as 'true'/'false' strings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == 'true'
    return False


def to_int(value: Any, default: int = 0) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def to_decimal(value: Any) -> Optional[Decimal]:
    """
    Parse a price given as a number or numeric string.

    Returns None for anything that is not a finite number.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not parsed.is_finite():
        return None
    return parsed


def to_instant(value: Any) -> Optional[datetime]:
    """
    Convert a timestamp to an aware UTC datetime.

    Accepts datetimes, epoch seconds (int or digit string, as the registrar
    sends `endtime`) and ISO-8601 strings. Naive datetimes are taken as UTC.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.isdigit():
            parsed = datetime.fromtimestamp(int(text), tz=timezone.utc)
        else:
            if text.endswith('Z'):
                text = text[:-1] + '+00:00'
            try:
                parsed = datetime.fromisoformat(text)
            except ValueError as e:
                raise ValidationError(f"Unrecognised timestamp: {value!r}") from e
    else:
        raise ValidationError(f"Unrecognised timestamp: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
