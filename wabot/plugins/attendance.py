# wabot/plugins/attendance.py
from __future__ import annotations

import logging
from typing import List

from ..errors import InvalidInput, NotAuthorized, NotFound
from ..services.attendance_engine import (
    AttendanceEngine,
    AttendanceSettings,
    is_attendance_form,
    parse_birthday,
    validate_form,
)
from ..services.logging_service import LogLevel
from ..utils.timeutil import format_local, local_now
from .base import Plugin, PluginContext, TaskSpec

logger = logging.getLogger(__name__)

# settings that admins may change from chat, with their value parser
_EDITABLE = {
    "reward": ("rewardAmount", int),
    "imagebonus": ("imageRewardBonus", int),
    "requireimage": ("requireImage", lambda v: v.lower() in ("on", "true", "yes", "1")),
    "minlength": ("minFieldLength", int),
    "streakbonus": ("enableStreakBonus", lambda v: v.lower() in ("on", "true", "yes", "1")),
    "autodetect": ("autoDetection", lambda v: v.lower() in ("on", "true", "yes", "1")),
    "dateformat": ("preferredDateFormat", lambda v: "DD/MM" if v.upper() == "DD/MM" else "MM/DD"),
}


class AttendancePlugin(Plugin):
    """GIST HQ attendance forms with streak rewards and birthday capture."""

    name = "attendance"
    version = "2.0.0"
    description = "Automatic attendance detection, streak rewards and birthdays"
    category = "community"
    commands = ("attendance", "attendstats", "birthday")
    aliases = {"att": "attendance", "mystats": "attendstats", "bday": "birthday"}
    wants_text = True

    def __init__(self, bot):
        super().__init__(bot)
        config = bot.config
        self.engine = AttendanceEngine(
            bot.store,
            bot.users,
            timezone=config.timezone,
            clock=bot.clock,
            currency=config.currency_symbol,
            settings=AttendanceSettings(
                rewardAmount=getattr(config, "attendance_reward", 500),
                imageRewardBonus=getattr(config, "attendance_image_bonus", 200),
                requireImage=getattr(config, "attendance_require_image", False),
            ),
        )

    def scheduled_tasks(self) -> List[TaskSpec]:
        return [
            TaskSpec("cleanup_records", "0 2 * * *", self.cleanup_records, "Delete attendance records older than 90 days"),
            TaskSpec("daily_report", "0 23 * * *", self.daily_report, "Summarise today's attendance"),
        ]

    async def setup(self) -> None:
        await self.engine.load_settings()

    # ---------- scheduled ----------

    async def cleanup_records(self, task_ctx) -> int:
        return await self.engine.cleanup_records(days=90)

    async def daily_report(self, task_ctx) -> dict:
        report = await self.engine.daily_report()
        logger.info(
            f"Attendance {report['date']}: {report['count']} form(s), "
            f"{report['total_rewards']} paid, {report['with_image']} with image"
        )
        if self.chat_logger is not None:
            await self.chat_logger.log_custom(
                "Attendance",
                f"Daily report {report['date']}",
                level=LogLevel.INFO,
                fields={
                    "Forms": str(report["count"]),
                    "Rewards": f"{self.bot.config.currency_symbol}{report['total_rewards']:,}",
                    "With image": str(report["with_image"]),
                },
            )
        return report

    # ---------- free text ----------

    async def on_text(self, ctx: PluginContext) -> bool:
        if not is_attendance_form(ctx.text):
            return False
        outcome = await self.engine.process(ctx.sender, ctx.text, ctx.msg.has_image, ctx.chat_id)
        if outcome.status == "disabled":
            return False
        await ctx.reply(outcome.message)
        if outcome.status == "approved":
            await ctx.react("✅")
        return True

    # ---------- commands ----------

    async def run(self, ctx: PluginContext) -> None:
        if ctx.command == "attendstats":
            await self._stats(ctx, ctx.helpers.target_user(ctx.msg, ctx.args) or ctx.sender)
        elif ctx.command == "birthday":
            await self._birthday(ctx)
        else:
            await self._attendance(ctx)

    async def _attendance(self, ctx: PluginContext) -> None:
        sub = ctx.args[0].lower() if ctx.args else ""
        p = ctx.config.command_prefix
        if sub == "stats":
            await self._stats(ctx, ctx.sender)
        elif sub == "records":
            await self._records(ctx)
        elif sub == "settings":
            await self._settings(ctx, ctx.args[1:])
        elif sub == "test":
            await self._test(ctx, ctx.text[len(ctx.args[0]):].strip())
        elif sub == "testbirthday":
            await self._test_birthday(ctx, " ".join(ctx.args[1:]))
        else:
            s = self.engine.settings
            await ctx.reply(
                "📋 *ATTENDANCE SYSTEM*\n\n"
                "Post the GIST HQ attendance form in the group to mark attendance.\n\n"
                f"💰 Reward: {ctx.helpers.money(s.rewardAmount)}"
                f" (+{ctx.helpers.money(s.imageRewardBonus)} with image)\n"
                f"🔥 x{s.streakBonusMultiplier} from a {s.streakBonusThreshold}-day streak\n\n"
                f"• {p}attendance stats\n• {p}attendance records\n"
                f"• {p}attendance test <form>\n• {p}attendance testbirthday <date>\n"
                f"• {p}attendance settings (admin)\n• {p}birthday [@user]"
            )

    async def _stats(self, ctx: PluginContext, user_id: str) -> None:
        stats = await self.engine.user_stats(user_id)
        await ctx.reply(
            f"📊 *ATTENDANCE STATS*\n\n"
            f"👤 @{user_id.split('@')[0]}\n"
            f"📅 Last attendance: {stats['lastAttendance'] or 'Never'}\n"
            f"✅ Today: {'Marked ✅' if stats['attendedToday'] else 'Not marked ❌'}\n"
            f"📋 Total: {stats['totalAttendances']}\n"
            f"🔥 Current streak: {stats['streak']} day(s)\n"
            f"🏆 Longest streak: {stats['longestStreak']} day(s)\n"
            f"💵 Wallet: {ctx.helpers.money(stats['balance'])}",
            mentions=[user_id],
        )

    async def _records(self, ctx: PluginContext) -> None:
        rows = await self.engine.records(ctx.sender, limit=10)
        if not rows:
            await ctx.reply("📝 No attendance records yet.")
            return
        lines = ["📝 *RECENT ATTENDANCE*\n"]
        for r in rows:
            image = " 📸" if r.get("hasImage") else ""
            lines.append(f"• {r['date']}: {ctx.helpers.money(r['reward'])} (streak {r['streak']}){image}")
        await ctx.reply("\n".join(lines))

    async def _settings(self, ctx: PluginContext, args: List[str]) -> None:
        if not await ctx.helpers.is_admin(ctx.sender, ctx.chat_id):
            raise NotAuthorized(f"{ctx.sender} tried to change attendance settings")
        if len(args) < 2:
            s = self.engine.settings
            await ctx.reply(
                "⚙️ *ATTENDANCE SETTINGS*\n\n"
                f"reward: {s.rewardAmount}\nimagebonus: {s.imageRewardBonus}\n"
                f"requireimage: {s.requireImage}\nminlength: {s.minFieldLength}\n"
                f"streakbonus: {s.enableStreakBonus}\nautodetect: {s.autoDetection}\n"
                f"dateformat: {s.preferredDateFormat}\n\n"
                f"Change with {ctx.config.command_prefix}attendance settings <name> <value>"
            )
            return
        key = args[0].lower()
        if key not in _EDITABLE:
            raise InvalidInput(f"⚠️ Unknown setting. Options: {', '.join(_EDITABLE)}")
        field_name, parse = _EDITABLE[key]
        try:
            value = parse(args[1])
        except ValueError:
            raise InvalidInput(f"⚠️ Invalid value for {key}: {args[1]}")
        if isinstance(value, int) and not isinstance(value, bool) and value < 0:
            raise InvalidInput("⚠️ Value cannot be negative")
        await self.engine.save_settings(**{field_name: value})
        logger.info(f"Attendance setting {field_name} set to {value!r} by {ctx.sender}")
        await ctx.reply(f"✅ {key} updated to {value}")

    async def _test(self, ctx: PluginContext, form: str) -> None:
        if not form:
            raise InvalidInput(f"⚠️ Usage: {ctx.config.command_prefix}attendance test <form text>")
        if not is_attendance_form(form):
            await ctx.reply("❌ Not recognised as a GIST HQ attendance form")
            return
        today = local_now(ctx.config.timezone, self.bot.clock()).date()
        result = validate_form(form, ctx.msg.has_image, self.engine.settings, today)
        if result.is_valid:
            bday = f"\n🎂 Birthday: {result.birthday.displayDate}" if result.birthday else ""
            await ctx.reply(f"✅ Form is complete and would be approved.{bday}")
            return
        lines = "\n".join(f"{i}. {f}" for i, f in enumerate(result.missing_fields, 1))
        await ctx.reply(f"❌ *INCOMPLETE ATTENDANCE FORM*\n\n{lines}")

    async def _test_birthday(self, ctx: PluginContext, text: str) -> None:
        if not text:
            raise InvalidInput(f"⚠️ Usage: {ctx.config.command_prefix}attendance testbirthday <date>")
        today = local_now(ctx.config.timezone, self.bot.clock()).date()
        parsed = parse_birthday(text, self.engine.settings.preferredDateFormat, today)
        if parsed is None:
            await ctx.reply(f"❌ Could not parse \"{text}\" as a birthday")
            return
        age = f"\n🎈 Age: {parsed.age}" if parsed.age is not None else ""
        await ctx.reply(f"✅ Parsed: {parsed.displayDate}\n🔑 Key: {parsed.searchKey}{age}")

    async def _birthday(self, ctx: PluginContext) -> None:
        if ctx.args and ctx.args[0].lower() == "today":
            rows = await self.engine.birthdays_on()
            if not rows:
                await ctx.reply("🎂 No birthdays today.")
                return
            names = "\n".join(f"🎉 {r['name']} (@{r['userId'].split('@')[0]})" for r in rows)
            await ctx.reply(f"🎂 *TODAY'S BIRTHDAYS*\n\n{names}", mentions=[r["userId"] for r in rows])
            return
        target = ctx.helpers.target_user(ctx.msg, ctx.args) or ctx.sender
        births = await self.bot.store.get_collection("birthdays")
        doc = await births.find_one({"userId": target})
        if doc is None:
            raise NotFound("🎂 No birthday saved yet. It is recorded from the D.O.B field of your attendance form.")
        updated = format_local(doc["lastUpdated"], ctx.config.timezone, "%d/%m/%Y") if doc.get("lastUpdated") else "-"
        await ctx.reply(
            f"🎂 *BIRTHDAY*\n\n👤 {doc['name']}\n📅 {doc['birthday']['displayDate']}\n🕐 Updated: {updated}",
            mentions=[target],
        )


def setup(bot) -> AttendancePlugin:
    return AttendancePlugin(bot)
