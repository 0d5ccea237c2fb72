import re

from workspace_archiver.errors import ValidationError

MAX_GROUP_PATH_LENGTH = 200

# Quotes, backticks, semicolons, pipes, ampersand, dollar, parens, redirection, backslash
DANGEROUS_CHARS = re.compile(r"['\";|&$`()<>\\]")

ACCOUNT_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")


def validate_group_path(path):
    """
    Checks an organizational-unit path before it is interpolated into a GAM query.

    Returns the path unchanged, or raises ValidationError.
    """
    if not path or not path.startswith("/"):
        raise ValidationError(f"Invalid OU path {path!r}: must start with forward slash")

    if DANGEROUS_CHARS.search(path):
        raise ValidationError(
            f"Invalid OU path {path!r}: contains dangerous characters "
            "(quotes, semicolons, pipes, etc.)"
        )

    if len(path) > MAX_GROUP_PATH_LENGTH:
        raise ValidationError(
            f"Invalid OU path: exceeds maximum length of {MAX_GROUP_PATH_LENGTH} characters"
        )

    return path


def is_valid_account_identifier(identifier):
    return bool(identifier) and ACCOUNT_PATTERN.fullmatch(identifier) is not None


def validate_account_identifier(identifier):
    if not is_valid_account_identifier(identifier):
        raise ValidationError(f"Invalid email format: {identifier!r}")
    return identifier
