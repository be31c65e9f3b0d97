"""
wabot/services/attendance_engine.py
GIST HQ attendance forms: detection, validation, streak-aware rewards and birthday capture
"""

import calendar
import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..database.models import AttendanceRecord, Birthday, ParsedBirthday
from ..scoring import kernel
from ..utils.timeutil import Clock, local_date_str, local_now, utcnow

if TYPE_CHECKING:
    from ..database.database_service import DatabaseService

logger = logging.getLogger(__name__)

FORM_SIGNATURE = re.compile(r"GIST\s+HQ.*?Name[:*].*?Relationship[:*]", re.IGNORECASE | re.DOTALL)

# (key, label, pattern); values stop at the end of the line
FORM_FIELDS = (
    ("name", "👤 Name", re.compile(r"Name[:*][ \t]*(.+)", re.IGNORECASE)),
    ("location", "🌍 Location", re.compile(r"Location[:*][ \t]*(.+)", re.IGNORECASE)),
    ("time", "⌚ Time", re.compile(r"Time[:*][ \t]*(.+)", re.IGNORECASE)),
    ("weather", "🌥 Weather", re.compile(r"Weather[:*][ \t]*(.+)", re.IGNORECASE)),
    ("mood", "❤️‍🔥 Mood", re.compile(r"Mood[:*][ \t]*(.+)", re.IGNORECASE)),
    ("dob", "🗓 D.O.B", re.compile(r"D\.O\.B[:*][ \t]*(.+)", re.IGNORECASE)),
    ("relationship", "👩‍❤️‍👨 Relationship", re.compile(r"Relationship[:*][ \t]*(.+)", re.IGNORECASE)),
)

WAKE_UP_PATTERNS = tuple(
    re.compile(rf"^\s*{n}[:.][ \t]*(.+)$", re.IGNORECASE | re.MULTILINE) for n in (1, 2, 3)
)

MONTHS = {name.lower(): i for i, name in enumerate(calendar.month_name) if name}
MONTHS.update({name.lower(): i for i, name in enumerate(calendar.month_abbr) if name})
MONTHS["sept"] = 9

_DOB_PREFIX = re.compile(r"^(dob|d\.o\.b|date of birth|birthday|born)[:=\s]*", re.IGNORECASE)
_ORDINAL = r"(?:st|nd|rd|th)?"
_MONTH_DAY_YEAR = re.compile(rf"^([a-z]+)\.?\s+(\d{{1,2}}){_ORDINAL},?(?:\s+(\d{{4}}))?$")
_DAY_MONTH_YEAR = re.compile(rf"^(\d{{1,2}}){_ORDINAL}\s+(?:of\s+)?([a-z]+)\.?,?(?:\s+(\d{{4}}))?$")
_NUMERIC = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})(?:[/\-.](\d{2}|\d{4}))?$")
_ISO = re.compile(r"^(\d{4})[/\-.](\d{1,2})[/\-.](\d{1,2})$")
_MONTH_DAY = re.compile(r"([a-z]+)\.?\s+(\d{1,2})")


@dataclass
class AttendanceSettings:
    rewardAmount: int = 500
    requireImage: bool = False
    imageRewardBonus: int = 200
    minFieldLength: int = 2
    enableStreakBonus: bool = True
    streakBonusMultiplier: float = 1.5
    streakBonusThreshold: int = 3
    autoDetection: bool = True
    preferredDateFormat: str = "MM/DD"  # or DD/MM

    @classmethod
    def from_doc(cls, doc: Optional[Dict[str, Any]], **defaults) -> "AttendanceSettings":
        settings = cls(**defaults)
        for key, value in (doc or {}).items():
            if key in cls.__dataclass_fields__:
                setattr(settings, key, value)
        return settings

    def to_doc(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FormValidation:
    is_valid: bool
    missing_fields: List[str] = field(default_factory=list)
    extracted: Dict[str, Any] = field(default_factory=dict)
    has_image: bool = False
    birthday: Optional[ParsedBirthday] = None


@dataclass
class AttendanceOutcome:
    status: str  # not_form | disabled | already | incomplete | approved
    message: str = ""
    reward: int = 0
    streak: int = 0
    balance: int = 0
    birthday: Optional[ParsedBirthday] = None


def is_attendance_form(text: str) -> bool:
    return bool(text) and bool(FORM_SIGNATURE.search(text))


def _days_in_month(month: int, year: Optional[int]) -> int:
    if month == 2:
        return 29 if year is None or calendar.isleap(year) else 28
    return calendar.monthrange(2001, month)[1]


def _expand_year(two_digit: int, today: Optional[date]) -> int:
    """Latest year ending in `two_digit` that is not in the future."""
    current = (today or date.today()).year
    year = current - current % 100 + two_digit
    return year - 100 if year > current else year


def _month(token: str) -> Optional[int]:
    token = token.lower()
    return MONTHS.get(token) or MONTHS.get(token[:3])


def format_birthday(day: int, month: int, year: Optional[int], original: str,
                    today: Optional[date] = None) -> Optional[ParsedBirthday]:
    if not 1 <= month <= 12 or not 1 <= day <= _days_in_month(month, year):
        return None
    name = calendar.month_name[month]
    age = None
    if year and today:
        age = today.year - year - ((today.month, today.day) < (month, day))
        if age < 0:
            age = None
    return ParsedBirthday(
        day=day,
        month=month,
        monthName=name,
        displayDate=f"{name} {day}, {year}" if year else f"{name} {day}",
        searchKey=f"{month:02d}-{day:02d}",
        originalText=original,
        year=year,
        age=age,
    )


def parse_birthday(text: str, preferred: str = "MM/DD", today: Optional[date] = None) -> Optional[ParsedBirthday]:
    """
    Tries, in order: "Month D[, YYYY]", "D Month [YYYY]", numeric with day/month
    disambiguation, ISO "YYYY-MM-DD", then a loose "Month D" anywhere in the text.
    """
    if not text or not isinstance(text, str):
        return None
    cleaned = _DOB_PREFIX.sub("", text.strip().lower()).strip().rstrip(", ").strip()
    if not cleaned:
        return None

    m = _MONTH_DAY_YEAR.match(cleaned)
    if m and _month(m.group(1)):
        year = int(m.group(3)) if m.group(3) else None
        return format_birthday(int(m.group(2)), _month(m.group(1)), year, cleaned, today)

    m = _DAY_MONTH_YEAR.match(cleaned)
    if m and _month(m.group(2)):
        year = int(m.group(3)) if m.group(3) else None
        return format_birthday(int(m.group(1)), _month(m.group(2)), year, cleaned, today)

    m = _NUMERIC.match(cleaned)
    if m:
        first, second = int(m.group(1)), int(m.group(2))
        year = None
        if m.group(3):
            year = _expand_year(int(m.group(3)), today) if len(m.group(3)) == 2 else int(m.group(3))
        if first > 12 and second <= 12:
            day, month = first, second
        elif second > 12 and first <= 12:
            day, month = second, first
        elif preferred.upper() == "DD/MM":
            day, month = first, second
        else:
            day, month = second, first
        return format_birthday(day, month, year, cleaned, today)

    m = _ISO.match(cleaned)
    if m:
        return format_birthday(int(m.group(3)), int(m.group(2)), int(m.group(1)), cleaned, today)

    m = _MONTH_DAY.search(cleaned)
    if m and _month(m.group(1)):
        return format_birthday(int(m.group(2)), _month(m.group(1)), None, cleaned, today)
    return None


def validate_form(text: str, has_image: bool, settings: AttendanceSettings,
                  today: Optional[date] = None) -> FormValidation:
    result = FormValidation(is_valid=False, has_image=has_image)
    if settings.requireImage and not has_image:
        result.missing_fields.append("📸 Image (required)")

    for key, label, pattern in FORM_FIELDS:
        m = pattern.search(text)
        value = m.group(1).strip() if m else ""
        if len(value) < settings.minFieldLength:
            result.missing_fields.append(label)
            continue
        result.extracted[key] = value
        if key == "dob":
            result.birthday = parse_birthday(value, settings.preferredDateFormat, today)
            if result.birthday is None:
                result.missing_fields.append(f"{label} (invalid format)")

    members, missing = [], []
    for n, pattern in enumerate(WAKE_UP_PATTERNS, start=1):
        m = pattern.search(text)
        value = m.group(1).strip() if m else ""
        if len(value) < settings.minFieldLength:
            missing.append(f"{n}:")
        else:
            members.append(value)
    if missing:
        result.missing_fields.append(f"🔔 Wake up members ({', '.join(missing)})")
    else:
        result.extracted["wakeUpMembers"] = members

    result.is_valid = not result.missing_fields
    return result


def next_streak(last_attendance: Optional[str], yesterday: str, current: int) -> int:
    return (current or 0) + 1 if last_attendance == yesterday else 1


def compute_reward(settings: AttendanceSettings, has_image: bool, streak: int) -> int:
    reward = settings.rewardAmount
    if has_image and settings.imageRewardBonus > 0:
        reward += settings.imageRewardBonus
    if settings.enableStreakBonus:
        multiplier = kernel.streak_multiplier(streak, settings.streakBonusThreshold, settings.streakBonusMultiplier)
        reward = kernel.apply_multiplier(reward, multiplier)
    return reward


class AttendanceEngine:
    SETTINGS_KEY = "attendance"

    def __init__(self, store: "DatabaseService", users, *, timezone: str = "Africa/Lagos", clock: Clock = utcnow,
                 currency: str = "₦", settings: Optional[AttendanceSettings] = None):
        self.store = store
        self.users = users
        self.timezone = timezone
        self.clock = clock
        self.currency = currency
        self.settings = settings or AttendanceSettings()
        self._defaults = self.settings.to_doc()

    async def _coll(self, name: str):
        return await self.store.get_collection(name)

    # ---------- settings ----------

    async def load_settings(self) -> AttendanceSettings:
        coll = await self._coll("plugin_settings")
        doc = await coll.find_one({"plugin": self.SETTINGS_KEY})
        self.settings = AttendanceSettings.from_doc((doc or {}).get("settings"), **self._defaults)
        return self.settings

    async def save_settings(self, **changes) -> AttendanceSettings:
        for key, value in changes.items():
            if key not in AttendanceSettings.__dataclass_fields__:
                raise KeyError(key)
            setattr(self.settings, key, value)
        coll = await self._coll("plugin_settings")
        await coll.update_one(
            {"plugin": self.SETTINGS_KEY},
            {"$set": {"settings": self.settings.to_doc(), "updatedAt": self.clock()}},
            upsert=True,
        )
        return self.settings

    # ---------- processing ----------

    def today(self, now: Optional[datetime] = None) -> str:
        return local_date_str(self.timezone, now or self.clock())

    async def process(self, user_id: str, text: str, has_image: bool = False,
                      chat_id: Optional[str] = None) -> AttendanceOutcome:
        if not is_attendance_form(text):
            return AttendanceOutcome(status="not_form")
        if not self.settings.autoDetection:
            return AttendanceOutcome(status="disabled")

        async with self.users.lock_for(f"attendance:{user_id}"):
            now = self.clock()
            today = self.today(now)
            profile = await self.users.get_user_data(user_id)
            if profile.lastAttendance == today:
                return AttendanceOutcome(
                    status="already",
                    message="📝 You've already marked your attendance today! Come back tomorrow.",
                )

            validation = validate_form(text, has_image, self.settings, local_now(self.timezone, now).date())
            if not validation.is_valid:
                lines = "\n".join(f"{i}. {f}" for i, f in enumerate(validation.missing_fields, start=1))
                return AttendanceOutcome(
                    status="incomplete",
                    message=(
                        "❌ *INCOMPLETE ATTENDANCE FORM*\n\n"
                        f"📄 Please complete the following fields:\n\n{lines}\n\n"
                        "💡 *Please fill out all required fields and try again.*"
                    ),
                )

            yesterday = local_date_str(self.timezone, now, days_ago=1)
            streak = next_streak(profile.lastAttendance, yesterday, profile.streak)
            longest = max(streak, profile.longestStreak or 0)
            await self.users.update_user_data(user_id, {
                "lastAttendance": today,
                "totalAttendances": (profile.totalAttendances or 0) + 1,
                "streak": streak,
                "longestStreak": longest,
            })

            birthday_note = ""
            if validation.birthday and validation.extracted.get("name"):
                await self.save_birthday(user_id, validation.extracted["name"], validation.birthday)
                birthday_note = f"\n🎂 Birthday saved/updated: {validation.birthday.displayDate}."

            reward = compute_reward(self.settings, has_image, streak)
            balance = await self.users.add_money(user_id, reward, "Attendance reward")
            record = AttendanceRecord(
                userId=user_id,
                date=today,
                reward=reward,
                streak=streak,
                hasImage=has_image,
                timestamp=now,
                chatId=chat_id,
                extractedData=validation.extracted,
            )
            records = await self._coll("attendance_records")
            await records.insert_one(record.to_doc())

        logger.info(f"Attendance approved for {user_id}: streak {streak}, reward {reward}")
        return AttendanceOutcome(
            status="approved",
            reward=reward,
            streak=streak,
            balance=balance,
            birthday=validation.birthday,
            message=(
                "✅ *ATTENDANCE APPROVED!* ✅\n\n"
                f"💰 Reward: {self.currency}{reward:,}\n"
                f"🔥 Current streak: {streak} day(s)\n"
                f"💵 New wallet balance: {self.currency}{balance:,}{birthday_note}\n\n"
                "🎉 *Thank you for your consistent participation!*"
            ),
        )

    async def save_birthday(self, user_id: str, name: str, parsed: ParsedBirthday) -> str:
        """Upsert the birthday document and keep a history of changes. Returns the update type."""
        coll = await self._coll("birthdays")
        now = self.clock()
        existing = await coll.find_one({"userId": user_id})
        update_type = "initial"
        final_name = name
        history: List[Dict[str, Any]] = []
        if existing:
            history = list(existing.get("updateHistory") or [])
            old = existing.get("birthday") or {}
            old_name = existing.get("name") or ""
            if old.get("month") == parsed.month and old.get("day") == parsed.day:
                update_type = "name_update"
                if not (len(name) > len(old_name) or (" " in name and " " not in old_name)):
                    final_name = old_name
                if old.get("year") and not parsed.year:
                    parsed.year = old["year"]
                    parsed.displayDate = old.get("displayDate", parsed.displayDate)
            else:
                update_type = "birthday_change"
            history.append({
                "type": update_type,
                "previousName": old_name,
                "previousBirthday": old,
                "newName": name,
                "timestamp": now,
            })
        else:
            history.append({"type": update_type, "name": name, "timestamp": now})

        record = Birthday(userId=user_id, name=final_name, birthday=parsed, lastUpdated=now, updateHistory=history)
        await coll.replace_one({"userId": user_id}, record.to_doc(), upsert=True)
        await self.users.update_user_data(user_id, {"birthdayData": parsed.to_doc(), "displayName": final_name})
        return update_type

    # ---------- reporting / maintenance ----------

    async def user_stats(self, user_id: str) -> Dict[str, Any]:
        profile = await self.users.get_user_data(user_id)
        return {
            "lastAttendance": profile.lastAttendance,
            "totalAttendances": profile.totalAttendances,
            "streak": profile.streak,
            "longestStreak": profile.longestStreak,
            "balance": profile.balance,
            "attendedToday": profile.lastAttendance == self.today(),
        }

    async def records(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        coll = await self._coll("attendance_records")
        return await coll.find({"userId": user_id}, sort=[("timestamp", -1)], limit=limit)

    async def cleanup_records(self, days: int = 90) -> int:
        cutoff = self.clock() - timedelta(days=days)
        coll = await self._coll("attendance_records")
        removed = await coll.delete_many({"timestamp": {"$lt": cutoff}})
        logger.info(f"Removed {removed} attendance record(s) older than {days} days")
        return removed

    async def daily_report(self) -> Dict[str, Any]:
        today = self.today()
        coll = await self._coll("attendance_records")
        rows = await coll.find({"date": today}, sort=[("timestamp", 1)])
        return {
            "date": today,
            "count": len(rows),
            "total_rewards": sum(int(r.get("reward") or 0) for r in rows),
            "with_image": sum(1 for r in rows if r.get("hasImage")),
            "top_streaks": sorted(((r["userId"], r.get("streak", 0)) for r in rows), key=lambda x: -x[1])[:5],
        }

    async def birthdays_on(self, when: Optional[datetime] = None) -> List[Dict[str, Any]]:
        local = local_now(self.timezone, when or self.clock())
        coll = await self._coll("birthdays")
        return await coll.find({"birthday.searchKey": local.strftime("%m-%d")})
