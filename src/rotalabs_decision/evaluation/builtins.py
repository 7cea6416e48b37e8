"""Built-in functions and runtime value helpers for expressions.

Every built-in is a pure function of its arguments except ``now()``, which a
model must call explicitly to introduce clock dependence.
"""

import json
import math
import re
import statistics
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, localcontext
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Tuple

from rotalabs_decision.core.context import detach
from rotalabs_decision.core.errors import DivisionByZeroError, ExpressionTypeError
from rotalabs_decision.core.values import is_number, values_equal


@dataclass(frozen=True)
class Interval:
    """Numeric (or string) range produced by ``[a..b]`` style literals."""

    start: Any
    end: Any
    left_closed: bool = True
    right_closed: bool = True

    def contains(self, value: Any) -> bool:
        if not (is_number(value) and is_number(self.start) and is_number(self.end)) and not (
            isinstance(value, str) and isinstance(self.start, str) and isinstance(self.end, str)
        ):
            raise ExpressionTypeError(
                f"Cannot test {type_name(value)} against interval of "
                f"{type_name(self.start)}..{type_name(self.end)}"
            )
        above = value >= self.start if self.left_closed else value > self.start
        below = value <= self.end if self.right_closed else value < self.end
        return above and below

    def __str__(self) -> str:
        left = "[" if self.left_closed else "("
        right = "]" if self.right_closed else ")"
        return f"{left}{self.start}..{self.end}{right}"


def type_name(value: Any) -> str:
    """Expression-language type name of a runtime value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, Interval):
        return "interval"
    return type(value).__name__


def to_display_string(value: Any) -> str:
    """Render a value the way templates and string() show it."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float, str)):
        return str(value)
    if isinstance(value, Interval):
        return str(value)
    return json.dumps(detach(value), sort_keys=True, default=str)


@lru_cache(maxsize=128)
def compile_pattern(pattern: str) -> re.Pattern:
    """Compile and cache a regex pattern.

    Raises:
        ExpressionTypeError: If the pattern is not a valid regular expression.
    """
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ExpressionTypeError(f"Invalid regular expression {pattern!r}: {e}")


def _expect(value: Any, check: Callable[[Any], bool], expected: str, fn: str) -> Any:
    if not check(value):
        raise ExpressionTypeError(f"{fn}() expects {expected}, got {type_name(value)}")
    return value


def _is_str(v: Any) -> bool:
    return isinstance(v, str)


def _is_list(v: Any) -> bool:
    return isinstance(v, (list, tuple))


def _is_dict(v: Any) -> bool:
    return isinstance(v, Mapping)


def _numbers(values: Any, fn: str) -> List[Any]:
    _expect(values, _is_list, "an array", fn)
    for v in values:
        _expect(v, is_number, "an array of numbers", fn)
    return list(values)


def _spread(args: Tuple[Any, ...], fn: str) -> List[Any]:
    # min(list) and min(a, b, ...) are both accepted.
    if len(args) == 1 and _is_list(args[0]):
        return _numbers(args[0], fn)
    return _numbers(list(args), fn)


def _normalize(value: float) -> Any:
    if isinstance(value, float) and value.is_integer() and abs(value) < 2**53:
        return int(value)
    return value


# String functions

def fn_len(value):
    _expect(value, lambda v: isinstance(v, (str, list, tuple, Mapping)), "a string, array or object", "len")
    return len(value)


def fn_upper(value):
    return _expect(value, _is_str, "a string", "upper").upper()


def fn_lower(value):
    return _expect(value, _is_str, "a string", "lower").lower()


def fn_trim(value):
    return _expect(value, _is_str, "a string", "trim").strip()


def fn_starts_with(value, prefix):
    _expect(value, _is_str, "a string", "startsWith")
    return value.startswith(_expect(prefix, _is_str, "a string prefix", "startsWith"))


def fn_ends_with(value, suffix):
    _expect(value, _is_str, "a string", "endsWith")
    return value.endswith(_expect(suffix, _is_str, "a string suffix", "endsWith"))


def fn_contains(haystack, needle):
    if isinstance(haystack, str):
        return _expect(needle, _is_str, "a string needle", "contains") in haystack
    if _is_list(haystack):
        return any(values_equal(item, needle) for item in haystack)
    if isinstance(haystack, Mapping):
        return needle in haystack
    raise ExpressionTypeError(f"contains() expects a string, array or object, got {type_name(haystack)}")


def fn_matches(value, pattern):
    _expect(value, _is_str, "a string", "matches")
    _expect(pattern, _is_str, "a string pattern", "matches")
    return compile_pattern(pattern).search(value) is not None


def fn_split(value, separator):
    _expect(value, _is_str, "a string", "split")
    _expect(separator, _is_str, "a string separator", "split")
    if not separator:
        return list(value)
    return value.split(separator)


def fn_join(values, separator=""):
    _expect(values, _is_list, "an array", "join")
    _expect(separator, _is_str, "a string separator", "join")
    return separator.join(to_display_string(v) for v in values)


def fn_string(value):
    return to_display_string(value)


# Number functions

def fn_number(value):
    if is_number(value):
        return value
    if isinstance(value, str):
        text = value.strip().replace("_", "")
        try:
            return int(text)
        except ValueError:
            pass
        try:
            result = float(text)
        except ValueError:
            raise ExpressionTypeError(f"number() cannot convert {value!r}")
        if math.isnan(result) or math.isinf(result):
            raise ExpressionTypeError(f"number() cannot convert {value!r}")
        return result
    raise ExpressionTypeError(f"number() expects a number or string, got {type_name(value)}")


def fn_is_numeric(value):
    if is_number(value):
        return True
    if isinstance(value, str):
        try:
            fn_number(value)
            return True
        except ExpressionTypeError:
            return False
    return False


def fn_bool(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise ExpressionTypeError(f"bool() cannot convert {type_name(value)} {value!r}")


def fn_abs(value):
    return abs(_expect(value, is_number, "a number", "abs"))


def fn_floor(value):
    return math.floor(_expect(value, is_number, "a number", "floor"))


def fn_ceil(value):
    return math.ceil(_expect(value, is_number, "a number", "ceil"))


def fn_round(value, digits=0):
    _expect(value, is_number, "a number", "round")
    _expect(digits, lambda d: isinstance(d, int) and not isinstance(d, bool), "integer digits", "round")
    if isinstance(value, float) and not math.isfinite(value):
        raise ExpressionTypeError(f"round() expects a finite number, got {value}")
    exact = Decimal(str(value))
    if digits > 0 and -exact.as_tuple().exponent <= digits:
        return float(value)
    with localcontext() as ctx:
        # Enough precision for every integer digit of the result
        ctx.prec = max(ctx.prec, exact.adjusted() + digits + 2)
        rounded = exact.quantize(Decimal(1).scaleb(-digits), rounding=ROUND_HALF_UP)
    return int(rounded) if digits <= 0 else float(rounded)


def fn_min(*args):
    values = _spread(args, "min")
    return min(values) if values else None


def fn_max(*args):
    values = _spread(args, "max")
    return max(values) if values else None


def fn_sum(values):
    values = _numbers(values, "sum")
    if any(isinstance(v, float) for v in values):
        return math.fsum(values)
    return sum(values)


def fn_avg(values):
    values = _numbers(values, "avg")
    if not values:
        return None
    return _normalize(math.fsum(values) / len(values))


def fn_median(values):
    values = _numbers(values, "median")
    if not values:
        return None
    return _normalize(statistics.median(values))


# Collection functions

def fn_keys(value):
    return list(_expect(value, _is_dict, "an object", "keys").keys())


def fn_values(value):
    return list(_expect(value, _is_dict, "an object", "values").values())


def fn_flat(values):
    _expect(values, _is_list, "an array", "flat")
    result = []
    for item in values:
        if _is_list(item):
            result.extend(item)
        else:
            result.append(item)
    return result


def fn_type(value):
    return type_name(value)


# Date functions. Timestamps are seconds since the Unix epoch, UTC.

def _parse_datetime(value: Any, fn: str) -> datetime:
    if is_number(value):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                parsed = datetime.combine(date.fromisoformat(text), datetime.min.time())
            except ValueError:
                raise ExpressionTypeError(f"{fn}() cannot parse date {value!r}")
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise ExpressionTypeError(f"{fn}() expects a date string or timestamp, got {type_name(value)}")


def fn_date(value):
    return _normalize(_parse_datetime(value, "date").timestamp())


def fn_now():
    return _normalize(datetime.now(tz=timezone.utc).timestamp())


def fn_year(value):
    return _parse_datetime(value, "year").year


def fn_month(value):
    return _parse_datetime(value, "month").month


def fn_day(value):
    return _parse_datetime(value, "day").day


def fn_day_of_week(value):
    return _parse_datetime(value, "dayOfWeek").isoweekday()


_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(ms|s|m|h|d|w)")
_DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}


def fn_duration(value):
    _expect(value, _is_str, "a duration string", "duration")
    text = value.replace(" ", "")
    total = 0.0
    consumed = 0
    for match in _DURATION_RE.finditer(text):
        if match.start() != consumed:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        consumed = match.end()
    if consumed == 0 or consumed != len(text):
        raise ExpressionTypeError(f"duration() cannot parse {value!r}")
    return _normalize(total)


@dataclass(frozen=True)
class Builtin:
    """A registered built-in function.

    Attributes:
        name: Name used in expressions.
        func: Implementation taking evaluated arguments.
        min_args: Minimum argument count.
        max_args: Maximum argument count (None for variadic).
    """

    name: str
    func: Callable[..., Any]
    min_args: int
    max_args: Optional[int]

    def __call__(self, args: List[Any]) -> Any:
        count = len(args)
        if count < self.min_args or (self.max_args is not None and count > self.max_args):
            if self.max_args is None:
                expected = f"at least {self.min_args}"
            elif self.min_args == self.max_args:
                expected = str(self.min_args)
            else:
                expected = f"{self.min_args} to {self.max_args}"
            raise ExpressionTypeError(f"{self.name}() takes {expected} argument(s), got {count}")
        try:
            return self.func(*args)
        except ZeroDivisionError as e:
            raise DivisionByZeroError(f"{self.name}(): {e}") from e
        except (ArithmeticError, ValueError, OSError) as e:
            raise ExpressionTypeError(f"{self.name}() failed: {type(e).__name__}: {e}") from e


BUILTIN_FUNCTIONS: Dict[str, Builtin] = {
    b.name: b
    for b in (
        Builtin("len", fn_len, 1, 1),
        Builtin("upper", fn_upper, 1, 1),
        Builtin("lower", fn_lower, 1, 1),
        Builtin("trim", fn_trim, 1, 1),
        Builtin("startsWith", fn_starts_with, 2, 2),
        Builtin("endsWith", fn_ends_with, 2, 2),
        Builtin("contains", fn_contains, 2, 2),
        Builtin("matches", fn_matches, 2, 2),
        Builtin("split", fn_split, 2, 2),
        Builtin("join", fn_join, 1, 2),
        Builtin("string", fn_string, 1, 1),
        Builtin("number", fn_number, 1, 1),
        Builtin("isNumeric", fn_is_numeric, 1, 1),
        Builtin("bool", fn_bool, 1, 1),
        Builtin("abs", fn_abs, 1, 1),
        Builtin("floor", fn_floor, 1, 1),
        Builtin("ceil", fn_ceil, 1, 1),
        Builtin("round", fn_round, 1, 2),
        Builtin("min", fn_min, 1, None),
        Builtin("max", fn_max, 1, None),
        Builtin("sum", fn_sum, 1, 1),
        Builtin("avg", fn_avg, 1, 1),
        Builtin("median", fn_median, 1, 1),
        Builtin("keys", fn_keys, 1, 1),
        Builtin("values", fn_values, 1, 1),
        Builtin("flat", fn_flat, 1, 1),
        Builtin("type", fn_type, 1, 1),
        Builtin("date", fn_date, 1, 1),
        Builtin("now", fn_now, 0, 0),
        Builtin("year", fn_year, 1, 1),
        Builtin("month", fn_month, 1, 1),
        Builtin("day", fn_day, 1, 1),
        Builtin("dayOfWeek", fn_day_of_week, 1, 1),
        Builtin("duration", fn_duration, 1, 1),
    )
}

# Built-ins whose second argument is evaluated once per element with '#' bound.
CLOSURE_FUNCTIONS = frozenset({"map", "filter", "some", "all", "none", "count", "one"})


def is_builtin_function(name: str) -> bool:
    """True if ``name`` is a regular or closure built-in."""
    return name in BUILTIN_FUNCTIONS or name in CLOSURE_FUNCTIONS
