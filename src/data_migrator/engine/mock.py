"""Mock data for anonymising committed rows.

Each ``MockField`` names a pattern such as ``first_name``, ``email``,
``integer(1, 100)`` or one of the sequence commands:

- ``c_seq_number(prefix, from, step)``: ``prefix1``, ``prefix2``, ...
- ``c_seq_date(from, step)``: dates stepping by ``d``, ``m``, ``y``,
  ``s`` or ``ms`` (negative with a leading ``-``).

Sequence counters live in a ``MockState`` created per task commit, so
two tasks (or two runs) never share counters.

Usage:
    generator = MockGenerator(entry.mock_fields, MockState(seed=1))
    payload = generator.apply(payload, source_row)
"""

import random
import re
import uuid
from calendar import monthrange
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from data_migrator.engine.records import record_id
from data_migrator.errors import InitializationError
from data_migrator.plan.models import MockField

ROW_FLAG = "--row"

_WORDS = (
    "alpha bravo cedar delta ember falcon granite harbor island juniper kestrel "
    "lumen meadow nectar orbit prairie quartz river summit timber umber valley "
    "willow xenon yonder zephyr"
).split()
_FIRST_NAMES = (
    "Alex Blake Casey Dana Eden Finley Gray Harper Indigo Jordan Kai Logan "
    "Morgan Noel Oakley Parker Quinn Riley Sage Taylor"
).split()
_LAST_NAMES = (
    "Abbott Brooks Carter Dalton Ellis Foster Garner Hayes Irving Jensen Keller "
    "Lawson Mercer Nolan Osborne Porter Reyes Sutton Turner Walsh"
).split()
_COMPANY_SUFFIXES = ("Inc", "LLC", "Group", "Partners", "Holdings", "Labs")
_CITIES = ("Springfield", "Riverton", "Lakeview", "Fairmont", "Greenville", "Oakridge")
_COUNTRIES = ("Canada", "Germany", "Japan", "Brazil", "Norway", "Kenya", "Chile")
_STREETS = ("Main St", "Oak Ave", "Maple Rd", "Cedar Ln", "Elm St", "Pine Dr")
_COLORS = ("red", "green", "blue", "orange", "purple", "teal", "gray")


@dataclass
class MockState:
    """Counters and random source for one mocking scope."""

    seed: int | None = None
    counters: dict[str, int] = field(default_factory=dict)
    dates: dict[str, datetime] = field(default_factory=dict)
    rng: random.Random = field(init=False)

    def __post_init__(self) -> None:
        self.rng = random.Random(self.seed)


Generator = Callable[[dict, MockState], object]


def _parse_pattern(pattern: str) -> tuple[str, list[str]]:
    match = re.fullmatch(r"\s*(\w+)\s*(?:\((.*)\))?\s*", pattern)
    if not match:
        raise InitializationError(f"Invalid mock pattern: {pattern}")
    name = match.group(1).lower()
    args_text = match.group(2)
    args = []
    if args_text:
        args = [a.strip().strip("'\"") for a in args_text.split(",")]
    return name, args


def _add_step(value: datetime, step: str) -> datetime:
    sign = -1 if step.startswith("-") else 1
    unit = step.lstrip("-")
    if unit == "d":
        return value + timedelta(days=sign)
    if unit == "s":
        return value + timedelta(seconds=sign)
    if unit == "ms":
        return value + timedelta(milliseconds=sign)
    if unit in ("m", "y"):
        months = sign * (12 if unit == "y" else 1)
        month_index = value.month - 1 + months
        year = value.year + month_index // 12
        month = month_index % 12 + 1
        day = min(value.day, monthrange(year, month)[1])
        return value.replace(year=year, month=month, day=day)
    raise InitializationError(f"Invalid c_seq_date step: {step}")


def compile_pattern(field_name: str, pattern: str) -> Generator:
    """Turn a pattern string into a value generator.

    Raises:
        InitializationError: For unknown patterns or bad arguments.
    """
    name, args = _parse_pattern(pattern)

    if name == "ids":
        return lambda row, state: record_id(row)

    if name == "c_seq_number":
        if len(args) == 4:
            args = args[1:]
        prefix = args[0] if args else ""
        start = int(args[1]) if len(args) > 1 and args[1] else 1
        step = int(args[2]) if len(args) > 2 and args[2] else 1

        def seq_number(row: dict, state: MockState) -> str:
            current = state.counters.get(field_name, start)
            state.counters[field_name] = current + step
            return f"{prefix}{current}"

        return seq_number

    if name == "c_seq_date":
        if len(args) == 3:
            args = args[1:]
        start = datetime.fromisoformat(args[0]) if args and args[0] else datetime(2000, 1, 1)
        step = args[1] if len(args) > 1 and args[1] else "d"
        _add_step(start, step)
        with_time = step.lstrip("-") in ("s", "ms")

        def seq_date(row: dict, state: MockState) -> str:
            current = state.dates.get(field_name, start)
            state.dates[field_name] = _add_step(current, step)
            return current.isoformat(timespec="milliseconds") if with_time else current.date().isoformat()

        return seq_date

    simple: dict[str, Generator] = {
        "word": lambda row, s: s.rng.choice(_WORDS),
        "sentence": lambda row, s: " ".join(s.rng.choice(_WORDS) for _ in range(6)).capitalize() + ".",
        "text": lambda row, s: " ".join(s.rng.choice(_WORDS) for _ in range(20)),
        "first_name": lambda row, s: s.rng.choice(_FIRST_NAMES),
        "last_name": lambda row, s: s.rng.choice(_LAST_NAMES),
        "full_name": lambda row, s: f"{s.rng.choice(_FIRST_NAMES)} {s.rng.choice(_LAST_NAMES)}",
        "company": lambda row, s: f"{s.rng.choice(_LAST_NAMES)} {s.rng.choice(_COMPANY_SUFFIXES)}",
        "email": lambda row, s: f"{s.rng.choice(_FIRST_NAMES).lower()}.{s.rng.randint(1000, 9999)}@example.com",
        "phone": lambda row, s: f"+1-555-{s.rng.randint(100, 999)}-{s.rng.randint(1000, 9999)}",
        "url": lambda row, s: f"https://{s.rng.choice(_WORDS)}.example.com",
        "city": lambda row, s: s.rng.choice(_CITIES),
        "country": lambda row, s: s.rng.choice(_COUNTRIES),
        "street": lambda row, s: f"{s.rng.randint(1, 9999)} {s.rng.choice(_STREETS)}",
        "boolean": lambda row, s: s.rng.random() < 0.5,
        "uuid": lambda row, s: str(uuid.UUID(int=s.rng.getrandbits(128))),
        "color": lambda row, s: s.rng.choice(_COLORS),
    }
    if name in simple:
        return simple[name]

    try:
        if name == "words":
            count = int(args[0]) if args else 3
            return lambda row, s: " ".join(s.rng.choice(_WORDS) for _ in range(count))
        if name == "integer":
            low, high = (int(args[0]), int(args[1])) if len(args) > 1 else (0, 1000)
            return lambda row, s: s.rng.randint(low, high)
        if name == "double":
            low, high = (float(args[0]), float(args[1])) if len(args) > 1 else (0.0, 1000.0)
            return lambda row, s: round(s.rng.uniform(low, high), 2)
    except ValueError as e:
        raise InitializationError(f"Invalid arguments in mock pattern {pattern}: {e}") from e

    if name == "date":
        fmt = args[0] if args else "%Y-%m-%d"
        return lambda row, s: (datetime(2000, 1, 1) + timedelta(days=s.rng.randint(0, 9000))).strftime(fmt)

    raise InitializationError(f"Unknown mock pattern '{pattern}' for field {field_name}")


def _compile_regex(expression: str) -> tuple[re.Pattern | None, bool]:
    expression = (expression or "").strip()
    whole_row = expression.endswith(ROW_FLAG)
    if whole_row:
        expression = expression[: -len(ROW_FLAG)].strip()
    if not expression:
        return None, False
    return re.compile(expression, re.IGNORECASE), whole_row


@dataclass
class _CompiledField:
    name: str
    generate: Generator
    excluded: re.Pattern | None
    excluded_row: bool
    included: re.Pattern | None
    included_row: bool


class MockGenerator:
    """Applies compiled mock fields to payload rows."""

    def __init__(self, mock_fields: list[MockField], state: MockState | None = None) -> None:
        self.state = state or MockState()
        self._fields: list[_CompiledField] = []
        for mock_field in mock_fields:
            excluded, excluded_row = _compile_regex(mock_field.excluded_regex)
            included, included_row = _compile_regex(mock_field.included_regex)
            self._fields.append(
                _CompiledField(
                    name=mock_field.name,
                    generate=compile_pattern(mock_field.name, mock_field.pattern),
                    excluded=excluded,
                    excluded_row=excluded_row,
                    included=included,
                    included_row=included_row,
                )
            )

    def __bool__(self) -> bool:
        return bool(self._fields)

    def apply(self, payload: dict, source_row: dict) -> dict:
        """Replace mocked fields of ``payload`` in place and return it.

        Regular expressions are matched against the source value.
        """
        if not self._fields or not self._row_selected(source_row):
            return payload

        for compiled in self._fields:
            if compiled.name not in payload:
                continue
            value = "" if source_row.get(compiled.name) is None else str(source_row.get(compiled.name))
            if compiled.excluded and not compiled.excluded_row and compiled.excluded.search(value):
                continue
            if compiled.included and not compiled.included_row and not compiled.included.search(value):
                continue
            payload[compiled.name] = compiled.generate(source_row, self.state)
        return payload

    def _row_selected(self, row: dict) -> bool:
        def value(name: str) -> str:
            return "" if row.get(name) is None else str(row.get(name))

        for compiled in self._fields:
            if compiled.excluded_row and compiled.excluded.search(value(compiled.name)):
                return False

        row_filters = [c for c in self._fields if c.included_row]
        if row_filters:
            return any(c.included.search(value(c.name)) for c in row_filters)
        return True
