"""Secret detection patterns.

Keyword patterns (``api_key = "..."``) match case-insensitively. Fixed-prefix
token shapes (``AKIA...``, ``ghp_...``, PEM headers) and upper-case environment
variable names match case-sensitively.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List


API_KEY = "api_key"
CLOUD_CREDENTIAL = "cloud_credential"
PLATFORM_TOKEN = "platform_token"
PRIVATE_KEY = "private_key"
DATABASE_URL = "database_url"
GENERIC_SECRET = "generic_secret"
ENV_SECRET = "env_secret"

CATEGORIES = [API_KEY, CLOUD_CREDENTIAL, PLATFORM_TOKEN, PRIVATE_KEY, DATABASE_URL,
              GENERIC_SECRET, ENV_SECRET]


@dataclass(frozen=True)
class SecretPattern:
    """A categorized detection regex."""
    category: str
    name: str
    pattern: str
    case_sensitive: bool = False
    regex: "re.Pattern" = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        flags = 0 if self.case_sensitive else re.IGNORECASE
        object.__setattr__(self, "regex", re.compile(self.pattern, flags))

    def search(self, text: str):
        return self.regex.search(text)


_QUOTED_20 = r"""['"][0-9a-zA-Z]{20,}['"]"""

DEFAULT_PATTERNS: List[SecretPattern] = [
    SecretPattern(API_KEY, "api key assignment", r"api[_-]?key.*" + _QUOTED_20),
    SecretPattern(API_KEY, "access token assignment", r"access[_-]?token.*" + _QUOTED_20),
    SecretPattern(API_KEY, "secret key assignment", r"secret[_-]?key.*" + _QUOTED_20),
    SecretPattern(API_KEY, "private key assignment", r"private[_-]?key.*" + _QUOTED_20),

    SecretPattern(CLOUD_CREDENTIAL, "aws access key id", r"\bAKIA[0-9A-Z]{16}\b", case_sensitive=True),
    SecretPattern(CLOUD_CREDENTIAL, "aws access key id assignment",
                  r"""aws[_-]?access[_-]?key[_-]?id.*['"][A-Z0-9]{20}['"]"""),
    SecretPattern(CLOUD_CREDENTIAL, "aws secret access key assignment",
                  r"""aws[_-]?secret[_-]?access[_-]?key.*['"][0-9a-zA-Z/+=]{40}['"]"""),

    SecretPattern(PLATFORM_TOKEN, "github token", r"\bgh[pousr]_[0-9a-zA-Z]{36}\b", case_sensitive=True),
    SecretPattern(PLATFORM_TOKEN, "json web token",
                  r"\beyJ[0-9a-zA-Z_-]+\.eyJ[0-9a-zA-Z_-]+\.[0-9a-zA-Z_-]+", case_sensitive=True),

    SecretPattern(PRIVATE_KEY, "private key block",
                  r"-----BEGIN (?:RSA |DSA |EC |OPENSSH |PGP )?PRIVATE KEY(?: BLOCK)?-----",
                  case_sensitive=True),

    SecretPattern(DATABASE_URL, "database url with credentials",
                  r"\b(?:mysql|postgres|postgresql|mongodb(?:\+srv)?|redis)://[^:\s/@]+:[^@\s/]+@[a-z0-9.-]+"),

    SecretPattern(GENERIC_SECRET, "password assignment",
                  r"""password['"]?\s*[:=]\s*['"][^'"]{8,}['"]"""),
    SecretPattern(GENERIC_SECRET, "token assignment", r"""token['"]?\s*[:=]\s*['"][^'"]{16,}['"]"""),
    SecretPattern(GENERIC_SECRET, "key assignment", r"""key['"]?\s*[:=]\s*['"][^'"]{16,}['"]"""),

    SecretPattern(ENV_SECRET, "secret environment variable",
                  r"\b[A-Z][A-Z0-9_]*_(?:KEY|SECRET|TOKEN|PASSWORD)=\S+", case_sensitive=True),
]


def patterns_from_config(entries: Iterable[Dict[str, Any]]) -> List[SecretPattern]:
    """Build extra patterns from ``security.extra_patterns`` config entries.

    Raises:
        ValueError: If an entry lacks a category or pattern, or does not compile.
    """
    patterns = []
    for i, entry in enumerate(entries or []):
        if not entry.get("category") or not entry.get("pattern"):
            raise ValueError(f"Secret pattern {i} needs 'category' and 'pattern'")
        try:
            patterns.append(SecretPattern(
                category=str(entry["category"]),
                name=str(entry.get("name", entry["category"])),
                pattern=str(entry["pattern"]),
                case_sensitive=bool(entry.get("case_sensitive", False)),
            ))
        except re.error as e:
            raise ValueError(f"Secret pattern {i} does not compile: {e}")
    return patterns
