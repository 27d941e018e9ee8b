"""Field validators for contact and activity forms.

Every predicate treats an empty value as valid; required-ness is decided by
the form validators at the bottom of this module.
"""
from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from urllib.parse import urlsplit

from touchbase.models import normalize_name, parse_timestamp, utc_now

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_RE = re.compile(r"^\+?[1-9]\d{0,15}$")
_PHONE_SEPARATORS = re.compile(r"[\s\-()]")
_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://")
_BIRTHDAY_RE = re.compile(r"^(0[1-9]|1[0-2])/(0[1-9]|[12][0-9]|3[01])/(\d{4})$")
_TWITTER_HANDLE_RE = re.compile(r"^@[A-Za-z0-9_]{1,15}$")
_INSTAGRAM_HANDLE_RE = re.compile(r"^@[A-Za-z0-9._]{1,30}$")
_ORG_TEXT_RE = re.compile(r"^[A-Za-z0-9\s\-&.,'()]+$")

MAX_COMPANY = 100
MAX_JOB_TITLE = 100
MAX_ADDRESS = 200
MAX_CONTACT_NOTES = 500
MAX_RELATIONSHIP_NOTES = 1000

# Logged interactions may sit slightly in the future to absorb clock skew.
INTERACTION_SKEW = timedelta(minutes=1)


def validate_email(value: str) -> bool:
    if not value:
        return True
    return bool(_EMAIL_RE.match(value))


def validate_phone(value: str) -> bool:
    if not value:
        return True
    return bool(_PHONE_RE.match(_PHONE_SEPARATORS.sub("", value)))


def validate_url(value: str) -> bool:
    if not value:
        return True
    url = value.strip()
    if not _SCHEME_RE.match(url):
        url = f"https://{url}"
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
    except ValueError:
        return False
    if parts.scheme not in ("http", "https"):
        return False
    if not hostname or "." not in hostname or any(c.isspace() for c in hostname):
        return False
    return all(hostname.split("."))


def validate_birthday(value: str, today: date | None = None) -> bool:
    """``MM/DD/YYYY`` naming a real date between 1900 and the current year."""
    if not value:
        return True
    m = _BIRTHDAY_RE.match(value)
    if not m:
        return False
    month, day, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
    try:
        date(year, month, day)
    except ValueError:
        return False
    today = today or utc_now().date()
    return 1900 <= year <= today.year


def _is_handle_or_url(value: str, handle_re: re.Pattern) -> bool:
    value = value.strip()
    if value.startswith("@"):
        return bool(handle_re.match(value))
    if value.startswith("http") or "." in value:
        return validate_url(value)
    return False


def validate_twitter(value: str) -> bool:
    if not value or not value.strip():
        return True
    return _is_handle_or_url(value, _TWITTER_HANDLE_RE)


def validate_instagram(value: str) -> bool:
    if not value or not value.strip():
        return True
    return _is_handle_or_url(value, _INSTAGRAM_HANDLE_RE)


def validate_length(value: str, limit: int) -> bool:
    return len(value or "") <= limit


def validate_interaction_date(when: datetime, now: datetime | None = None) -> bool:
    return when <= (now or utc_now()) + INTERACTION_SKEW


def validate_reminder_date(when: datetime, now: datetime | None = None) -> bool:
    return when > (now or utc_now())


def _org_field_error(value: str, label: str, limit: int) -> str | None:
    if not value or not value.strip():
        return None
    if len(value) > limit:
        return f"{label} must be {limit} characters or less"
    if len(value.strip()) < 2:
        return f"{label} must be at least 2 characters long"
    if not _ORG_TEXT_RE.match(value.strip()):
        return f"{label} contains invalid characters"
    return None


def validate_contact_form(form: dict, today: date | None = None) -> dict[str, str]:
    """Validate a new-contact form; returns field -> message for each problem.

    ``form`` uses the wire field names: contactName, phone, email, website,
    linkedin, twitter, instagram, facebook, company, jobTitle, address,
    birthday, notes.
    """
    errors: dict[str, str] = {}
    name = (form.get("contactName") or "").strip()
    if not name:
        errors["contactName"] = "Contact name is required"
    elif len(name) < 2:
        errors["contactName"] = "Contact name must be at least 2 characters long"

    if not validate_email(form.get("email", "")):
        errors["email"] = "Please enter a valid email address"
    if not validate_phone(form.get("phone", "")):
        errors["phone"] = "Please enter a valid phone number"
    for key, example in (
        ("website", "https://example.com"),
        ("linkedin", "https://linkedin.com/in/username"),
        ("facebook", "https://facebook.com/username"),
    ):
        if not validate_url(form.get(key, "")):
            errors[key] = f"Please enter a valid URL (e.g., {example})"
    if not validate_twitter(form.get("twitter", "")):
        errors["twitter"] = "Please enter a valid X/Twitter handle (@username, 1-15 characters) or URL"
    if not validate_instagram(form.get("instagram", "")):
        errors["instagram"] = "Please enter a valid Instagram handle (@username, 1-30 characters) or URL"
    if not validate_birthday(form.get("birthday", ""), today):
        errors["birthday"] = "Please enter a valid birthday (MM/DD/YYYY)"

    company_error = _org_field_error(form.get("company", ""), "Company name", MAX_COMPANY)
    if company_error:
        errors["company"] = company_error
    title_error = _org_field_error(form.get("jobTitle", ""), "Job title", MAX_JOB_TITLE)
    if title_error:
        errors["jobTitle"] = title_error
    if not validate_length(form.get("address", ""), MAX_ADDRESS):
        errors["address"] = f"Address must be {MAX_ADDRESS} characters or less"
    if not validate_length(form.get("notes", ""), MAX_CONTACT_NOTES):
        errors["notes"] = f"Notes must be {MAX_CONTACT_NOTES} characters or less"
    return errors


def validate_relationship_form(form: dict, today: date | None = None) -> dict[str, str]:
    """Validate a relationship's own fields plus its embedded contact data."""
    errors: dict[str, str] = {}
    if not normalize_name(form.get("contactName", "")):
        errors["contactName"] = "Contact name is required"
    if not validate_length(form.get("notes", ""), MAX_RELATIONSHIP_NOTES):
        errors["notes"] = f"Notes must be {MAX_RELATIONSHIP_NOTES} characters or less"

    contact = form.get("contactData") or {}
    for phone in contact.get("phones", []):
        if not validate_phone(phone.get("number", "")):
            errors["contactData.phones"] = "Please enter a valid phone number"
    for email in contact.get("emails", []):
        if not validate_email(email.get("email", "")):
            errors["contactData.emails"] = "Please enter a valid email address"
    for key in ("website", "linkedin", "facebook"):
        if not validate_url(contact.get(key, "")):
            errors[f"contactData.{key}"] = "Please enter a valid URL"
    if not validate_twitter(contact.get("twitter", "")):
        errors["contactData.twitter"] = "Please enter a valid X/Twitter handle or URL"
    if not validate_instagram(contact.get("instagram", "")):
        errors["contactData.instagram"] = "Please enter a valid Instagram handle or URL"
    if not validate_birthday(contact.get("birthday", ""), today):
        errors["contactData.birthday"] = "Please enter a valid birthday (MM/DD/YYYY)"
    if not validate_length(contact.get("company", ""), MAX_COMPANY):
        errors["contactData.company"] = f"Company name must be {MAX_COMPANY} characters or less"
    if not validate_length(contact.get("jobTitle", ""), MAX_JOB_TITLE):
        errors["contactData.jobTitle"] = f"Job title must be {MAX_JOB_TITLE} characters or less"
    if not validate_length(contact.get("address", ""), MAX_ADDRESS):
        errors["contactData.address"] = f"Address must be {MAX_ADDRESS} characters or less"
    if not validate_length(contact.get("notes", ""), MAX_CONTACT_NOTES):
        errors["contactData.notes"] = f"Notes must be {MAX_CONTACT_NOTES} characters or less"
    return errors


def validate_activity_form(form: dict, now: datetime | None = None) -> dict[str, str]:
    """Validate an activity payload in wire form before it is recorded."""
    errors: dict[str, str] = {}
    now = now or utc_now()
    kind = form.get("type")
    contact_name = (form.get("contactName") or "").strip()

    if kind == "note":
        if not (form.get("content") or form.get("description") or "").strip():
            errors["content"] = "Note content is required"
    elif kind == "interaction":
        if not contact_name:
            errors["contactName"] = "Contact name is required for interactions"
        when = form.get("date")
        if when:
            try:
                if not validate_interaction_date(parse_timestamp(when), now):
                    errors["date"] = "Interaction date must be in the past"
            except ValueError:
                errors["date"] = "Interaction date is invalid"
    elif kind == "reminder":
        if not contact_name:
            errors["contactName"] = "Contact name is required for reminders"
        when = form.get("reminderDate")
        if not when:
            errors["reminderDate"] = "Reminder date is required"
        else:
            try:
                if not validate_reminder_date(parse_timestamp(when), now):
                    errors["reminderDate"] = "Reminder date must be in the future"
            except ValueError:
                errors["reminderDate"] = "Reminder date is invalid"
    return errors
