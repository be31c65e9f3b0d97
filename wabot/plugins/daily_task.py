# wabot/plugins/daily_task.py
from __future__ import annotations

import logging
import random
import re
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from ..errors import NotAuthorized, NotFound
from ..scoring.kernel import apply_multiplier, streak_multiplier
from ..utils.timeutil import local_date_str, local_now, weekday_name
from .base import Plugin, PluginContext, TaskSpec

logger = logging.getLogger(__name__)

TASKS_COLLECTION = "daily_tasks"
SUBMISSIONS_COLLECTION = "daily_task_submissions"
SETTINGS_KEY = "daily_task"

BASE_REWARD = 300
CORRECT_BONUS = 50
STREAK_THRESHOLD = 3
STREAK_MULTIPLIER = 1.5
QUESTION_COUNT = 5

THEMES = {
    "monday": ("Business Ideas & Entrepreneurship", "business"),
    "tuesday": ("General Knowledge", "general"),
    "wednesday": ("Hygiene & Health", "hygiene"),
    "thursday": ("Current Affairs & News", "current_affairs"),
    "friday": ("Science & Technology", "science"),
    "saturday": ("Fun Facts & Entertainment", "fun_facts"),
    "sunday": ("Mixed Topics", "mixed"),
}

# (question, accepted answer); "any ..." accepts every non-trivial reply, commas separate alternatives
QUESTION_BANK: Dict[str, List[tuple]] = {
    "business": [
        ("What does ROI stand for in business?", "Return on Investment"),
        ("What does MVP mean in business?", "Minimum Viable Product"),
        ("Name one way to fund your startup business", "Personal savings, loans, investors, grants"),
        ("How can you market your business for free?", "Social media, networking, word of mouth"),
        ("Name one way to reduce business costs", "Automation, bulk purchasing, remote work"),
        ("What is the first step in starting any business?", "Market research, business planning"),
        ("Name one successful Nigerian entrepreneur you admire", "Aliko Dangote, Tony Elumelu, Folorunsho Alakija"),
        ("What business idea have you always wanted to try?", "Any business idea"),
        ("If you had ₦100,000 today, what business would you start?", "Any business idea"),
        ("What skill do you have that others might pay for?", "Any skill or talent"),
    ],
    "general": [
        ("What is the capital of Nigeria?", "Abuja"),
        ("How many states are in Nigeria?", "36"),
        ("What year did Nigeria gain independence?", "1960"),
        ("What is the largest continent in the world?", "Asia"),
        ("How many days are in a leap year?", "366"),
        ("What does www stand for?", "World Wide Web"),
        ("How many minutes are in a full day?", "1440"),
        ("What is the largest ocean in the world?", "Pacific Ocean"),
        ("Which state in Nigeria are you from?", "Any Nigerian state"),
        ("What is your favorite Nigerian food?", "Any Nigerian food"),
    ],
    "hygiene": [
        ("How many times should you brush your teeth daily?", "2"),
        ("How long should you wash your hands to kill germs?", "20 seconds"),
        ("How often should you change your toothbrush?", "Every 3 months"),
        ("How many glasses of water should you drink daily?", "8"),
        ("What should you do before eating?", "Wash your hands"),
        ("How many hours of sleep do adults need daily?", "7-9"),
        ("How often should you clip your nails?", "Weekly"),
        ("What time do you usually wake up in the morning?", "Any time"),
        ("What's your favorite way to stay fit?", "Any exercise or activity"),
        ("What healthy habit are you trying to build?", "Any healthy habit"),
    ],
    "current_affairs": [
        ("What does CBN stand for?", "Central Bank of Nigeria"),
        ("What does NYSC stand for?", "National Youth Service Corps"),
        ("Which state is known for oil production?", "Rivers, Delta, Akwa Ibom"),
        ("Name one challenge facing Nigerian youth", "Unemployment, inflation, education"),
        ("What major tech company invested in Nigeria recently?", "Google, Microsoft, Meta"),
        ("When were new naira notes introduced?", "2022"),
        ("What change would you like to see in Nigeria?", "Any positive change"),
        ("Which Nigerian news source do you trust most?", "Any news source"),
        ("Do you think Nigeria is heading in the right direction?", "Yes, No"),
        ("What's the biggest problem in your community?", "Any community problem"),
    ],
    "science": [
        ("What gas do plants absorb from the atmosphere?", "Carbon dioxide"),
        ("Which planet is closest to the Sun?", "Mercury"),
        ("What does DNA stand for?", "Deoxyribonucleic acid"),
        ("How many bones are in the human body?", "206"),
        ("What is the chemical symbol for water?", "H2O"),
        ("Which organ pumps blood?", "Heart"),
        ("How many chambers are in the human heart?", "4"),
        ("What is the largest organ in the human body?", "Skin"),
        ("What's your favorite subject in school?", "Any school subject"),
        ("What technology do you use most daily?", "Any technology"),
    ],
    "fun_facts": [
        ("Which animal is King of the Jungle?", "Lion"),
        ("How many legs does a spider have?", "8"),
        ("What is the tallest building in the world?", "Burj Khalifa"),
        ("How many strings does a guitar have?", "6"),
        ("What is the fastest land animal?", "Cheetah"),
        ("How many colors are in a rainbow?", "7"),
        ("Which planet is the Red Planet?", "Mars"),
        ("What's your favorite movie of all time?", "Any movie"),
        ("Do you prefer cats or dogs?", "Cats, dogs"),
        ("What makes you laugh the most?", "Any answer"),
    ],
}

ANSWER_RE = re.compile(r"(?:^|\s)(\d{1,2})[.)][ \t]*(.*?)(?=\s+\d{1,2}[.)](?:\s|$)|\s*$)", re.DOTALL)
_OPEN_RE = re.compile(r"\b(any|personal)\b", re.IGNORECASE)
_NUMBER_RE = re.compile(r"\d+")


def parse_answers(text: str) -> Dict[int, str]:
    """Numbered answers, "1. Abuja 2. 36", keyed by question number."""
    answers = {}
    for m in ANSWER_RE.finditer(text or ""):
        answer = " ".join(m.group(2).split())
        if len(answer) >= 1:
            answers.setdefault(int(m.group(1)), answer)
    return answers


def is_correct(answer: str, accepted: str) -> bool:
    """
    Open questions ("Any ...") accept any reply of two or more characters.
    Factual ones match case-insensitively: exact, one of the comma-separated
    alternatives, substring either way, or the same leading number.
    """
    if not answer or not accepted:
        return False
    given = answer.lower().strip()
    expected = accepted.lower().strip()
    if _OPEN_RE.search(expected):
        return len(given) >= 2
    if given == expected:
        return True
    options = [o.strip() for o in expected.split(",") if o.strip()] if "," in expected else [expected]
    for option in options:
        if option in given or (len(given) >= 3 and given in option):
            return True
    given_numbers = _NUMBER_RE.findall(given)
    expected_numbers = _NUMBER_RE.findall(expected)
    return bool(given_numbers and expected_numbers and given_numbers[0] == expected_numbers[0])


def task_reward(correct: int, streak: int) -> Dict[str, int]:
    base = apply_multiplier(BASE_REWARD, streak_multiplier(streak, STREAK_THRESHOLD, STREAK_MULTIPLIER))
    bonus = correct * CORRECT_BONUS
    return {"base": BASE_REWARD, "streak_bonus": base - BASE_REWARD, "correct_bonus": bonus, "total": base + bonus}


class DailyTaskPlugin(Plugin):
    """Themed daily quiz answered with numbered replies; rewards grow with the streak."""

    name = "daily_task"
    version = "2.1.0"
    description = "Daily themed quiz with streak rewards"
    category = "community"
    commands = ("dailytask", "taskstreak")
    aliases = {"dt": "dailytask"}
    wants_text = True

    def __init__(self, bot):
        super().__init__(bot)
        self.rng = getattr(bot, "rng", None) or random.Random()

    def scheduled_tasks(self) -> List[TaskSpec]:
        return [TaskSpec("post_daily_task", "0 8 * * *", self.post_daily_task, "Post today's quiz to task groups")]

    @property
    def tz(self) -> str:
        return self.bot.config.timezone

    async def _tasks(self):
        return await self.bot.store.get_collection(TASKS_COLLECTION)

    async def _submissions(self):
        return await self.bot.store.get_collection(SUBMISSIONS_COLLECTION)

    async def group_ids(self) -> List[str]:
        settings = await self.bot.store.get_collection("plugin_settings")
        doc = await settings.find_one({"plugin": SETTINGS_KEY})
        return list((doc or {}).get("groupJids") or [])

    async def add_group(self, chat_id: str) -> None:
        settings = await self.bot.store.get_collection("plugin_settings")
        await settings.update_one({"plugin": SETTINGS_KEY}, {"$addToSet": {"groupJids": chat_id}}, upsert=True)

    # ---------- task lifecycle ----------

    def pick_questions(self, category: str) -> List[Dict[str, str]]:
        if category == "mixed":
            pool = [q for bank in QUESTION_BANK.values() for q in bank]
        else:
            pool = list(QUESTION_BANK.get(category) or QUESTION_BANK["general"])
        if len(pool) < QUESTION_COUNT:
            pool += [q for q in QUESTION_BANK["general"] if q not in pool]
        return [{"question": q, "correctAnswer": a} for q, a in self.rng.sample(pool, QUESTION_COUNT)]

    async def today_task(self, now=None) -> Optional[Dict[str, Any]]:
        return await (await self._tasks()).find_one({"date": local_date_str(self.tz, now or self.bot.clock())})

    async def ensure_task(self, now=None) -> Dict[str, Any]:
        """Today's task, created on first use. One task per local date."""
        now = now or self.bot.clock()
        existing = await self.today_task(now)
        if existing:
            return existing
        theme, category = THEMES[weekday_name(self.tz, now)]
        task = {
            "date": local_date_str(self.tz, now),
            "theme": theme,
            "category": category,
            "questions": self.pick_questions(category),
            "postedAt": now,
        }
        try:
            await (await self._tasks()).insert_one(task)
        except DuplicateKeyError:
            return await self.today_task(now)
        logger.info(f"Daily task created for {task['date']} ({theme})")
        return task

    def format_task(self, task: Dict[str, Any], now=None) -> str:
        local = local_now(self.tz, now or self.bot.clock())
        money = self.bot.helpers.money
        lines = [
            "🏢 *GIST HQ - DAILY TASK CHALLENGE* 🏢",
            "",
            f"📅 {local.strftime('%A, %B %d, %Y')}",
            f"🎯 *Today's Theme:* {task['theme'].upper()}",
            "",
            f"📝 *Answer all {len(task['questions'])} questions to earn your reward!*",
            "",
        ]
        for i, q in enumerate(task["questions"], 1):
            lines.append(f"{i}️⃣ {q['question']}")
        lines += [
            "",
            f"💰 *Reward:* {money(BASE_REWARD)} + {money(CORRECT_BONUS)} per correct answer",
            f"🔥 *Streak Bonus:* +{int((STREAK_MULTIPLIER - 1) * 100)}% after {STREAK_THRESHOLD} consecutive days",
            "",
            "📋 *Reply format:*",
            "1. answer\n2. answer\n3. answer\n4. answer\n5. answer",
        ]
        return "\n".join(lines)

    async def post_daily_task(self, task_ctx) -> int:
        groups = await self.group_ids()
        if not groups:
            logger.info("No daily task groups configured; skipping post")
            return 0
        task = await self.ensure_task(task_ctx.now)
        text = self.format_task(task, task_ctx.now)
        for chat_id in groups:
            members = [p.id for p in await self.bot.messenger.group_participants(chat_id)]
            await task_ctx.send(chat_id, text, mentions=members or None)
        return len(groups)

    # ---------- submissions ----------

    async def submit(self, user_id: str, answers: Dict[int, str], now=None) -> Dict[str, Any]:
        """Score a submission and pay the reward. Raises NotFound without a task today."""
        now = now or self.bot.clock()
        task = await self.today_task(now)
        if task is None:
            raise NotFound(f"❌ No active task for today. Use {self.bot.config.command_prefix}dailytask to see it.")
        today = task["date"]
        results = [is_correct(answers.get(i, ""), q["correctAnswer"]) for i, q in enumerate(task["questions"], 1)]
        correct = sum(results)

        users = self.bot.users
        profile = (await users.get_user_data(user_id)).profile
        last = profile.get("lastTaskCompletion")
        streak = int(profile.get("taskStreak") or 0)
        if last == local_date_str(self.tz, now, days_ago=1):
            streak += 1
        elif last != today:
            streak = 1
        reward = task_reward(correct, streak)

        submissions = await self._submissions()
        try:
            await submissions.insert_one({
                "userId": user_id,
                "date": today,
                "answers": {str(k): v for k, v in answers.items()},
                "correctCount": correct,
                "reward": reward["total"],
                "streak": streak,
                "submittedAt": now,
            })
        except DuplicateKeyError:
            return {"status": "already"}

        await users.update_user_data(user_id, {
            "profile.lastTaskCompletion": today,
            "profile.taskStreak": streak,
            "profile.longestTaskStreak": max(streak, int(profile.get("longestTaskStreak") or 0)),
            "profile.totalTaskCompletions": int(profile.get("totalTaskCompletions") or 0) + 1,
            "profile.totalCorrectAnswers": int(profile.get("totalCorrectAnswers") or 0) + correct,
        })
        balance = await users.add_money(user_id, reward["total"], "Daily task completion")
        return {
            "status": "completed",
            "results": results,
            "correct": correct,
            "total_questions": len(results),
            "streak": streak,
            "reward": reward,
            "balance": balance,
        }

    async def on_text(self, ctx: PluginContext) -> bool:
        answers = parse_answers(ctx.text)
        if len(answers) < QUESTION_COUNT or not all(i in answers for i in range(1, QUESTION_COUNT + 1)):
            return False
        if await self.today_task() is None:
            return False
        outcome = await self.submit(ctx.sender, answers)
        if outcome["status"] == "already":
            await ctx.reply("📝 *You've already completed today's task!*\n\nCome back tomorrow. 🚀")
            return True
        money = ctx.helpers.money
        reward = outcome["reward"]
        streak_line = f"• Streak: +{money(reward['streak_bonus'])}\n" if reward["streak_bonus"] else ""
        await ctx.reply(
            "✅ *TASK COMPLETED!* ✅\n\n"
            f"📊 Score: {outcome['correct']}/{outcome['total_questions']} correct\n\n"
            "💰 *Rewards:*\n"
            f"• Base: {money(reward['base'])}\n"
            f"{streak_line}"
            f"• Correct: +{money(reward['correct_bonus'])}\n"
            f"• *Total: {money(reward['total'])}*\n\n"
            f"💸 Balance: {money(outcome['balance'])}\n"
            f"🔥 Streak: {outcome['streak']} day(s)\n\n"
            f"📝 Results: {''.join('✅' if ok else '❌' for ok in outcome['results'])}"
        )
        await ctx.react("✅")
        return True

    # ---------- commands ----------

    async def run(self, ctx: PluginContext) -> None:
        if ctx.command == "taskstreak":
            await self._streak(ctx)
            return
        sub = ctx.args[0].lower() if ctx.args else "current"
        if sub == "current":
            task = await self.ensure_task()
            await ctx.reply(self.format_task(task))
        elif sub == "post":
            if not await ctx.helpers.is_admin(ctx.sender, ctx.chat_id):
                raise NotAuthorized(f"{ctx.sender} tried to post the daily task")
            await self.add_group(ctx.chat_id)
            task = await self.ensure_task()
            members = [p.id for p in await self.bot.messenger.group_participants(ctx.chat_id)]
            await ctx.sock.send_text(ctx.chat_id, self.format_task(task), mentions=members or None)
        elif sub == "completions":
            await self._completions(ctx)
        elif sub == "stats":
            await self._streak(ctx)
        else:
            p = ctx.config.command_prefix
            await ctx.reply(
                f"📝 *DAILY TASK*\n\n• {p}dailytask current\n• {p}dailytask completions\n"
                f"• {p}dailytask stats\n• {p}dailytask post (admin)\n• {p}taskstreak"
            )

    async def _completions(self, ctx: PluginContext) -> None:
        today = local_date_str(self.tz, self.bot.clock())
        rows = await (await self._submissions()).find({"date": today}, sort=[("submittedAt", 1)])
        if not rows:
            await ctx.reply(f"📋 No completions yet for {today}.")
            return
        lines = [f"📋 *COMPLETIONS {today}*", ""]
        lines += [
            f"{i}. @{r['userId'].split('@')[0]} - {r['correctCount']}/{QUESTION_COUNT} (🔥 {r['streak']})"
            for i, r in enumerate(rows, 1)
        ]
        await ctx.reply("\n".join(lines), mentions=[r["userId"] for r in rows])

    async def _streak(self, ctx: PluginContext) -> None:
        target = ctx.helpers.target_user(ctx.msg, ctx.args) or ctx.sender
        profile = (await self.bot.users.get_user_data(target)).profile
        submissions = await self._submissions()
        total = await submissions.count_documents({"userId": target})
        await ctx.reply(
            f"🔥 *TASK STREAK*\n\n"
            f"👤 @{target.split('@')[0]}\n"
            f"📅 Last completion: {profile.get('lastTaskCompletion') or 'Never'}\n"
            f"🔥 Current streak: {profile.get('taskStreak', 0)} day(s)\n"
            f"🏆 Longest streak: {profile.get('longestTaskStreak', 0)} day(s)\n"
            f"✅ Tasks completed: {total}\n"
            f"🎯 Correct answers: {profile.get('totalCorrectAnswers', 0)}",
            mentions=[target],
        )


def setup(bot) -> DailyTaskPlugin:
    return DailyTaskPlugin(bot)
