"""
Password policy engine.

Generates credentials under a configurable complexity policy.
All randomness comes from the ``secrets`` CSPRNG.

Usage:
    >>> from dbclaim.core.password import generate_password
    >>> from dbclaim.models.claim import PasswordConfig
    >>>
    >>> policy = PasswordConfig(passwordComplexity="enabled", minPasswordLength="15")
    >>> len(generate_password(policy))
    15
"""
import secrets
import string

from dbclaim.exceptions import PolicyViolationError
from dbclaim.models.claim import PasswordConfig

# Length used whenever complexity is disabled, regardless of minPasswordLength
DEFAULT_PASSWORD_LENGTH = 32

UPPERCASE = string.ascii_uppercase
LOWERCASE = string.ascii_lowercase
DIGITS = string.digits
# No quotes, backslash or whitespace
SYMBOLS = "!#$%&()*+,-./:;<=>?@[]^_{|}~"

REQUIRED_CLASSES = (UPPERCASE, LOWERCASE, DIGITS, SYMBOLS)
MIN_COMPLEX_PASSWORD_LENGTH = len(REQUIRED_CLASSES)

_rng = secrets.SystemRandom()


def _required_length(policy: PasswordConfig) -> int:
    try:
        length = int(policy.min_password_length)
    except (TypeError, ValueError):
        raise PolicyViolationError(
            "minPasswordLength must be an integer when password complexity is enabled",
            details={"min_password_length": policy.min_password_length},
        )

    if length < MIN_COMPLEX_PASSWORD_LENGTH:
        raise PolicyViolationError(
            f"minPasswordLength {length} cannot fit one character from each of "
            f"{MIN_COMPLEX_PASSWORD_LENGTH} required classes",
            details={"min_password_length": length, "required": MIN_COMPLEX_PASSWORD_LENGTH},
        )
    return length


def generate_password(policy: PasswordConfig) -> str:
    """
    Generate a password for the given policy.

    With complexity disabled, returns DEFAULT_PASSWORD_LENGTH alphanumerics.
    With complexity enabled, returns exactly minPasswordLength characters with
    at least one uppercase, lowercase, digit and symbol character.

    Raises:
        PolicyViolationError: If the policy cannot be satisfied
    """
    if not policy.complexity_enabled:
        alphabet = UPPERCASE + LOWERCASE + DIGITS
        return "".join(secrets.choice(alphabet) for _ in range(DEFAULT_PASSWORD_LENGTH))

    length = _required_length(policy)
    alphabet = "".join(REQUIRED_CLASSES)

    chars = [secrets.choice(cls) for cls in REQUIRED_CLASSES]
    chars += [secrets.choice(alphabet) for _ in range(length - len(chars))]
    _rng.shuffle(chars)
    return "".join(chars)
