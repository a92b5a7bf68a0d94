"""Ref-name validation applied before any ref reaches a mutating git call.

Rules follow git-check-ref-format, plus a leading-dash ban so a ref can never
be read as an option by tooling further down.
"""

from forks_backend.shared.errors import RefValidationError

MAX_REF_LENGTH = 256

# space, tilde, caret, colon, question mark, asterisk, brackets, backslash, at-sign, brace
FORBIDDEN_REF_CHARS = frozenset(" ~^:?*[]\\@{")


def _has_control_char(name: str) -> bool:
    return any(ord(ch) <= 0x1F or ord(ch) == 0x7F for ch in name)


def validate_git_ref(name: str) -> None:
    if not name or len(name) > MAX_REF_LENGTH:
        raise RefValidationError("invalid ref: empty or too long")
    if name.startswith("-"):
        raise RefValidationError("invalid ref: starts with dash")
    if name.endswith(".lock"):
        raise RefValidationError("invalid ref: ends with .lock")
    if "//" in name:
        raise RefValidationError("invalid ref: contains consecutive slashes")
    if "@{" in name:
        raise RefValidationError("invalid ref: contains @{")
    if _has_control_char(name):
        raise RefValidationError("invalid ref: contains control character")
    if any(ch in FORBIDDEN_REF_CHARS for ch in name):
        raise RefValidationError("invalid ref: contains forbidden character")
    for component in name.split("/"):
        if not component or component.startswith(".") or component.endswith("."):
            raise RefValidationError("invalid ref: invalid path component")


def is_valid_git_ref(name: str) -> bool:
    try:
        validate_git_ref(name)
    except RefValidationError:
        return False
    return True
