import math
import re
from datetime import datetime

ISO_DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}")


def validate_required(value, field_name, errors):
    if not value:
        errors[field_name] = f"{field_name.replace('_', ' ').title()} is required."


def validate_zip_code(value, field_name, errors, required=False):
    if not value:
        if required:
            errors[field_name] = f"{field_name.replace('_', ' ').title()} is required."
        return
    if not value.isdigit() or len(value) != 5:
        errors[field_name] = (
            f"{field_name.replace('_', ' ').title()} must be exactly 5 digits."
        )


def validate_iso_date(value, field_name, errors, required=False):
    if not value:
        if required:
            errors[field_name] = f"{field_name.replace('_', ' ').title()} is required."
        return
    text = str(value)
    try:
        if not ISO_DATE_PATTERN.fullmatch(text):
            raise ValueError(text)
        datetime.strptime(text, "%Y-%m-%d")
    except ValueError:
        errors[field_name] = (
            f"{field_name.replace('_', ' ').title()} must be a date (YYYY-MM-DD)."
        )


def validate_non_negative_amount(value, field_name, errors):
    if value is None or value == "":
        return
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        parsed = None
    if parsed is None or not math.isfinite(parsed) or parsed < 0:
        errors[field_name] = (
            f"{field_name.replace('_', ' ').title()} must be zero or a positive number."
        )


def validate_choice(value, choices, field_name, errors):
    if value not in choices:
        errors[field_name] = (
            f"{field_name.replace('_', ' ').title()} must be one of: {', '.join(choices)}."
        )
