# common/validators.py
import re


def check_field_rules(data: dict, rules: dict, partial: bool = False) -> dict:
    """
    Apply a field-rules table to already-parsed request data.

    ``rules`` maps a field name to any of:
        required        -- value must be present and non-blank
        min_length      -- minimum length of the stripped string value
        pattern         -- regex the whole value must match
        choices         -- allowed values
        message         -- override for the pattern/choices message

    With ``partial=True`` (PATCH) fields absent from ``data`` are not required.
    Returns ``{field: [messages]}``; an empty dict means the data is valid.
    """
    errors = {}
    for field, rule in rules.items():
        present = field in data
        value = data.get(field)
        if isinstance(value, str):
            value = value.strip()

        if value is None or value == "":
            if rule.get("required") and (present or not partial):
                errors.setdefault(field, []).append("This field is required.")
            continue

        text = str(value)
        min_length = rule.get("min_length")
        if min_length and len(text) < min_length:
            errors.setdefault(field, []).append(
                f"Ensure this field has at least {min_length} characters."
            )

        pattern = rule.get("pattern")
        if pattern and not re.fullmatch(pattern, text):
            errors.setdefault(field, []).append(rule.get("message") or "Invalid format.")

        choices = rule.get("choices")
        if choices and value not in choices:
            errors.setdefault(field, []).append(
                rule.get("message") or f"'{value}' is not a valid choice."
            )
    return errors
