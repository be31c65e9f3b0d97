"""
wabot/services/cron.py
Five-field cron expressions (minute hour day-of-month month day-of-week), evaluated by croniter
"""

from dataclasses import dataclass
from datetime import datetime

from croniter import croniter

from ..errors import CronParseError

_MACROS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}


@dataclass(frozen=True)
class CronExpression:
    expression: str
    fields: str

    @classmethod
    def parse(cls, expression: str) -> "CronExpression":
        text = (expression or "").strip()
        fields = _MACROS.get(text.lower(), text)
        count = len(fields.split())
        if count != 5:
            raise CronParseError(f"Cron expression needs 5 fields, got {count}: '{expression}'")
        try:
            croniter(fields, datetime(2000, 1, 1))
        except ValueError as e:
            raise CronParseError(f"Invalid cron expression '{expression}': {e}") from e
        return cls(expression=text, fields=fields)

    def matches(self, when: datetime) -> bool:
        """True when the wall-clock minute of `when` is a fire time."""
        return croniter.match(self.fields, when)

    def next_after(self, when: datetime) -> datetime:
        return croniter(self.fields, when).get_next(datetime)


def parse_cron(expression: str) -> CronExpression:
    return CronExpression.parse(expression)
