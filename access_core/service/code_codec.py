import logging
import re
import secrets
import string
from dataclasses import dataclass
from typing import List, Optional, Union

log = logging.getLogger(__name__)

COMPLEX_PREFIX = "EA"
HASH_LENGTH = 8
SEQUENCE_LENGTH = 4
MAX_SEQUENCE = 10**SEQUENCE_LENGTH - 1

HASH_ALPHABET = string.ascii_uppercase + string.digits
SEQUENCE_ALPHABET = string.digits

SIMPLE_PREFIXES = ["BETA", "ALPHA", "GAMMA", "DELTA", "EPSILON", "ZETA", "ETA"]

MAX_ATTEMPTS_COMPLEX = 100
MAX_ATTEMPTS_SIMPLE = 1000

# used with fullmatch, so no anchors and no trailing newline slips through
COMPLEX_PATTERN = re.compile(rf"{COMPLEX_PREFIX}-[A-Z0-9]{{{HASH_LENGTH}}}-[0-9]{{{SEQUENCE_LENGTH}}}")
SIMPLE_PATTERN = re.compile(r"([A-Z0-9]{2,20})([0-9]{4})")
PREFIX_PATTERN = re.compile(r"[A-Z0-9]{2,20}")


@dataclass(frozen=True)
class ComplexCode:
    hash: str
    sequence: str

    @property
    def code(self) -> str:
        return f"{COMPLEX_PREFIX}-{self.hash}-{self.sequence}"


@dataclass(frozen=True)
class SimpleCode:
    prefix: str
    number: str

    @property
    def code(self) -> str:
        return f"{self.prefix}{self.number}"


ParsedCode = Union[ComplexCode, SimpleCode]


def generate_code(sequence: int = None, simple: bool = False, custom_prefix: str = None) -> str:
    """
    Generate a single token code.

    Complex codes look like ``EA-A1B2C3D4-0001`` and are meant for unique, single
    redemption tokens. If ``sequence`` is given, it becomes the zero padded last
    segment, otherwise the segment is random.

    Simple codes look like ``BETA0042`` or ``LAUNCH20250042`` and are meant for
    shared tokens. The prefix is ``custom_prefix`` in upper case or a random
    dictionary word, the suffix a random number between 1 and 9999.
    ``sequence`` has no effect on simple codes.
    """
    if simple:
        if custom_prefix:
            prefix = custom_prefix.upper()
            if not PREFIX_PATTERN.fullmatch(prefix):
                raise InvalidPrefix(f"prefix {custom_prefix!r} must be 2 to 20 letters or digits")
        else:
            prefix = secrets.choice(SIMPLE_PREFIXES)
        number = secrets.randbelow(MAX_SEQUENCE) + 1
        return f"{prefix}{number:0{SEQUENCE_LENGTH}d}"

    hash_ = _random_string(HASH_ALPHABET, HASH_LENGTH)
    if sequence is None:
        sequence_segment = _random_string(SEQUENCE_ALPHABET, SEQUENCE_LENGTH)
    elif 0 <= sequence <= MAX_SEQUENCE:
        sequence_segment = f"{sequence:0{SEQUENCE_LENGTH}d}"
    else:
        raise ValueError(f"sequence must be between 0 and {MAX_SEQUENCE}, got {sequence}")
    return f"{COMPLEX_PREFIX}-{hash_}-{sequence_segment}"


def validate_format(code: str) -> bool:
    # Both patterns are tested independently. A dash-less string like EAA1B2C3D40001
    # is not a complex code but is still accepted as a simple one.
    return bool(COMPLEX_PATTERN.fullmatch(code) or SIMPLE_PATTERN.fullmatch(code))


def parse_code(code: str) -> Optional[ParsedCode]:
    if not validate_format(code):
        return None

    if code.startswith(f"{COMPLEX_PREFIX}-"):
        _, hash_, sequence = code.split("-")
        return ComplexCode(hash=hash_, sequence=sequence)

    if match := SIMPLE_PATTERN.fullmatch(code):
        return SimpleCode(prefix=match.group(1), number=match.group(2))

    return None


def generate_batch(
    count: int,
    start_sequence: int = None,
    simple: bool = False,
    custom_prefix: str = None,
) -> List[str]:
    """
    Generate ``count`` codes that are unique within the batch.

    Each code is retried on collision, up to a limit that depends on the format.
    Simple codes only have 9999 possible values per prefix, so they get more attempts.
    Uniqueness against codes that already exist elsewhere is not checked here.
    """
    if count < 0:
        raise ValueError(f"count must not be negative, got {count}")

    max_attempts = MAX_ATTEMPTS_SIMPLE if simple else MAX_ATTEMPTS_COMPLEX
    codes = []
    used = set()

    for i in range(count):
        sequence = start_sequence + i if start_sequence is not None else None
        for _ in range(max_attempts):
            code = generate_code(sequence, simple, custom_prefix)
            if code not in used:
                break
        else:
            raise ExhaustedRetries(
                f"could not generate a unique code after {max_attempts} attempts ({len(codes)} of {count} done)"
            )
        codes.append(code)
        used.add(code)

    log.debug(f"generated batch of {len(codes)} {'simple' if simple else 'complex'} codes")
    return codes


def _random_string(alphabet: str, length: int) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


class CodecError(Exception):
    pass


class ExhaustedRetries(CodecError):
    pass


class InvalidPrefix(CodecError, ValueError):
    pass
