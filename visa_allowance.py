from __future__ import annotations

import argparse
import enum
import logging
import sys
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import IO, Iterable, List, Optional, Sequence, Tuple


logger = logging.getLogger(__name__)

DATE_FMT = "%Y-%m-%d"
CONTROL_PERIOD_DAYS = 180
ALLOWED_DAYS = 90


# ---------- Errors ----------

class AllowanceError(Exception):
    """Base class for every failure that aborts an allowance calculation."""


class ParseError(AllowanceError, ValueError):
    def __init__(self, value: str, line: Optional[int] = None) -> None:
        self.value = value
        self.line = line
        where = f" on line {line}" if line is not None else ""
        super().__init__(f"Invalid date{where}: {value!r}. Use YYYY-MM-DD (e.g., 2024-04-01)")


class InputError(AllowanceError, OSError):
    pass


class InvalidInterval(AllowanceError, ValueError):
    pass


class UnpairedDatesError(InvalidInterval):
    pass


class ClockError(AllowanceError):
    pass


# ---------- Domain ----------

@dataclass
class DateInterval:
    """A closed range of calendar days (inclusive of both start and end).

    Used both for stays and for the control window. The clipping methods only
    ever narrow the range, so a valid interval stays valid.
    """

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise InvalidInterval(
                f"End date {self.end.isoformat()} is before the start date {self.start.isoformat()}"
            )

    def num_days(self) -> int:
        """Number of days in the interval, counting both the first and the last day."""
        return (self.end - self.start).days + 1

    def start_no_earlier(self, d: date) -> None:
        """Move the start to `d` if the interval starts before `d` and ends on `d` or after."""
        if self.start < d <= self.end:
            self.start = d

    def end_no_later(self, d: date) -> None:
        """Move the end to `d` if the interval starts on `d` or before and ends after `d`."""
        if self.start <= d < self.end:
            self.end = d

    def overlaps(self, other: DateInterval) -> bool:
        return self.start <= other.end and other.start <= self.end

    def __str__(self) -> str:
        return f"from {self.start.isoformat()} to {self.end.isoformat()}"


class Verdict(enum.Enum):
    WITHIN = "within"
    EXCEEDS = "exceeds"


def parse_date(value: str, line: Optional[int] = None) -> date:
    value = value.strip()
    try:
        return datetime.strptime(value, DATE_FMT).date()
    except ValueError:
        raise ParseError(value, line) from None


def utc_today(now: Optional[datetime] = None) -> date:
    """Today's calendar date in UTC."""
    try:
        now = now if now is not None else datetime.now(timezone.utc)
        return now.astimezone(timezone.utc).date()
    except (OverflowError, OSError, ValueError) as exc:
        raise ClockError(f"Cannot resolve today's date: {exc}") from exc


# ---------- Pipeline ----------

def control_window(end_date: date, period_days: int = CONTROL_PERIOD_DAYS) -> DateInterval:
    if period_days < 0:
        raise InvalidInterval(f"Control period must not be negative, got {period_days}")
    try:
        start = end_date - timedelta(days=period_days)
    except OverflowError:
        raise InvalidInterval(
            f"Control period of {period_days} days before {end_date.isoformat()} is out of the supported date range"
        ) from None
    return DateInterval(start, end_date)


def normalize_dates(dates: Iterable[date]) -> Tuple[List[date], int]:
    """Sort the dates and drop repeats.

    Returns (unique_sorted_dates, duplicates_removed). A non-zero count is
    reported as a warning; it never fails the run.
    """
    ordered = sorted(dates)
    unique: List[date] = []
    for d in ordered:
        if not unique or unique[-1] != d:
            unique.append(d)
    removed = len(ordered) - len(unique)
    if removed:
        logger.warning("Removed %d duplicate date%s", removed, "" if removed == 1 else "s")
    return unique, removed


def pair_dates(dates: Sequence[date]) -> List[DateInterval]:
    """Turn [entry, exit, entry, exit, ...] into stays."""
    if len(dates) % 2:
        raise UnpairedDatesError(
            f"Expected an even number of dates (entry and exit for each stay), got {len(dates)}; "
            f"{dates[-1].isoformat()} has no pair"
        )
    stays: List[DateInterval] = []
    for i in range(0, len(dates), 2):
        stays.append(DateInterval(dates[i], dates[i + 1]))
    return stays


def clip_to_window(intervals: Iterable[DateInterval], window: DateInterval) -> List[DateInterval]:
    """Keep the intervals overlapping the window, narrowed to the window bounds."""
    kept: List[DateInterval] = []
    for di in intervals:
        if not di.overlaps(window):
            logger.debug("Skipping stay %s outside the control period", di)
            continue
        di.start_no_earlier(window.start)
        di.end_no_later(window.end)
        kept.append(di)
    return kept


def make_date_intervals(dates: Sequence[date], window: DateInterval) -> List[DateInterval]:
    # Every pair is validated before any is filtered, so a reversed pair
    # fails the run even when it lies outside the window.
    return clip_to_window(pair_dates(dates), window)


def total_days(intervals: Iterable[DateInterval]) -> int:
    return sum(di.num_days() for di in intervals)


def assess(total: int, allowed: int) -> Verdict:
    return Verdict.EXCEEDS if total > allowed else Verdict.WITHIN


# ---------- Configuration ----------

@dataclass(frozen=True)
class Config:
    period_days: int = CONTROL_PERIOD_DAYS
    allowed_days: int = ALLOWED_DAYS
    end_date: Optional[date] = None
    file: Optional[str] = None
    plan_start: Optional[date] = None
    plan_end: Optional[date] = None
    plan_length: Optional[int] = None
    strict: bool = False

    def planned_stay(self) -> Optional[DateInterval]:
        if self.plan_start is None:
            return None
        if self.plan_end is not None:
            return DateInterval(self.plan_start, self.plan_end)
        if self.plan_length is not None:
            if self.plan_length < 1:
                raise InvalidInterval(f"Planned trip length must be at least 1 day, got {self.plan_length}")
            try:
                plan_end = self.plan_start + timedelta(days=self.plan_length - 1)
            except OverflowError:
                raise InvalidInterval(
                    f"Planned trip length of {self.plan_length} days from {self.plan_start.isoformat()} "
                    "is out of the supported date range"
                ) from None
            return DateInterval(self.plan_start, plan_end)
        return DateInterval(self.plan_start, self.plan_start)

    def resolve_end_date(self, today: Optional[date] = None) -> date:
        if self.end_date is not None:
            return self.end_date
        planned = self.planned_stay()
        if planned is not None:
            return planned.end
        return today if today is not None else utc_today()


@dataclass
class AllowanceReport:
    window: DateInterval
    intervals: List[DateInterval]
    total: int
    allowed: int
    verdict: Verdict
    duplicates_removed: int = 0
    planned: Optional[DateInterval] = None
    planned_days: int = 0

    @property
    def remaining(self) -> int:
        return max(0, self.allowed - self.total)

    @property
    def exceeds(self) -> bool:
        return self.verdict is Verdict.EXCEEDS


def check_allowance(dates: Sequence[date], config: Config, today: Optional[date] = None) -> AllowanceReport:
    """Core check: days spent inside the control window ending on the reference date.

    Dates are sorted and deduplicated before pairing, so an exit given before
    its entry is paired in order. The planned trip, if any, is clipped like a
    recorded stay and counted after the recorded ones.
    """
    end_date = config.resolve_end_date(today)
    window = control_window(end_date, config.period_days)
    logger.debug("Control period is %s", window)

    unique, removed = normalize_dates(dates)
    intervals = make_date_intervals(unique, window)

    planned = config.planned_stay()
    planned_days = 0
    if planned is not None:
        clipped_plan = clip_to_window([DateInterval(planned.start, planned.end)], window)
        planned_days = total_days(clipped_plan)
        intervals.extend(clipped_plan)

    total = total_days(intervals)
    return AllowanceReport(
        window=window,
        intervals=intervals,
        total=total,
        allowed=config.allowed_days,
        verdict=assess(total, config.allowed_days),
        duplicates_removed=removed,
        planned=planned,
        planned_days=planned_days,
    )


# ---------- Presentation ----------

def format_window(window: DateInterval) -> str:
    return f"Visa control period is {window} ({window.num_days()} days)"


def format_intervals(intervals: Sequence[DateInterval]) -> str:
    if not intervals:
        return "Date intervals: none"
    parts = [f"{i}) {di}" for i, di in enumerate(intervals, start=1)]
    return "Date intervals: " + ", ".join(parts)


def format_report(report: AllowanceReport) -> str:
    lines = [format_window(report.window), format_intervals(report.intervals)]
    if report.planned is not None:
        lines.append(f"Planned trip {report.planned}: {report.planned_days} days in the control period")
    lines.append(f"Days used in the control period: {report.total}")
    if report.exceeds:
        lines.append(
            f"NOT compliant: {report.total} days exceed the allowed {report.allowed} "
            f"by {report.total - report.allowed}"
        )
    else:
        lines.append(f"Compliant: YES ({report.remaining} of {report.allowed} days remaining)")
    return "\n".join(lines)


# ---------- IO Helpers ----------

def read_dates(stream: IO[str]) -> List[date]:
    dates: List[date] = []
    try:
        for idx, line in enumerate(stream, start=1):
            if not line.strip():
                continue
            dates.append(parse_date(line, idx))
    except UnicodeDecodeError as exc:
        name = getattr(stream, "name", "input")
        raise InputError(f"Cannot read dates from {name}: not valid text ({exc.reason})") from exc
    return dates


def open_dates(path: Optional[str]) -> List[date]:
    if path is None or path == "-":
        return read_dates(sys.stdin)
    try:
        with open(path, encoding="utf-8") as f:
            return read_dates(f)
    except InputError:
        raise
    except OSError as exc:
        raise InputError(f"Cannot read dates from {path}: {exc.strerror or exc}") from exc


# ---------- CLI ----------

def _non_negative_int(value: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from None
    if n < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {n}")
    return n


def _date_arg(value: str) -> date:
    try:
        return parse_date(value)
    except ParseError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "Count the days spent inside a rolling control period (default: 90 out of "
            "180 days) from a list of entry and exit dates, one YYYY-MM-DD per line."
        )
    )
    parser.add_argument(
        "-e",
        "--end",
        dest="end",
        type=_date_arg,
        help="End date for the calculation (YYYY-MM-DD). Default: today (UTC)",
    )
    parser.add_argument(
        "-f",
        "--file",
        dest="file",
        help="File with entry and exit dates in YYYY-MM-DD format. Default: standard input",
    )
    parser.add_argument(
        "-p",
        "--period",
        dest="period",
        type=_non_negative_int,
        default=CONTROL_PERIOD_DAYS,
        help=f"Number of days in the control period. Default: {CONTROL_PERIOD_DAYS}",
    )
    parser.add_argument(
        "-a",
        "--allowed",
        dest="allowed",
        type=_non_negative_int,
        default=ALLOWED_DAYS,
        help=f"Days allowed within the control period. Default: {ALLOWED_DAYS}",
    )
    # Planned trip
    parser.add_argument("--plan-start", dest="plan_start", type=_date_arg, help="Planned trip start date (YYYY-MM-DD)")
    parser.add_argument("--plan-end", dest="plan_end", type=_date_arg, help="Planned trip end date (YYYY-MM-DD)")
    parser.add_argument(
        "--plan-length",
        dest="plan_length",
        type=int,
        help="Planned trip length in days (inclusive). Use with --plan-start",
    )
    parser.add_argument(
        "--strict",
        dest="strict",
        action="store_true",
        help="Exit with status 2 when the allowed days are exceeded",
    )
    parser.add_argument("-v", "--verbose", dest="verbose", action="store_true", help="Log debug details")
    return parser


def config_from_args(args: argparse.Namespace) -> Config:
    return Config(
        period_days=args.period,
        allowed_days=args.allowed,
        end_date=args.end,
        file=args.file,
        plan_start=args.plan_start,
        plan_end=args.plan_end,
        plan_length=args.plan_length,
        strict=args.strict,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.plan_start is None and (args.plan_end is not None or args.plan_length is not None):
        parser.error("--plan-end and --plan-length require --plan-start")
    if args.plan_end is not None and args.plan_length is not None:
        parser.error("use either --plan-end or --plan-length, not both")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )
    config = config_from_args(args)

    try:
        dates = open_dates(config.file)
        report = check_allowance(dates, config)
    except AllowanceError as exc:
        raise SystemExit(f"Error: {exc}")

    print(format_report(report))

    if config.strict and report.exceeds:
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
