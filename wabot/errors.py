"""
wabot/errors.py
Error kinds shared by the runtime and the plugins
"""

from typing import Optional


class BotError(Exception):
    """Base class for every error the runtime knows how to surface."""

    user_message = "❌ Something went wrong. Please try again later."

    def __init__(self, message: str = "", *, user_message: Optional[str] = None):
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class InvalidInput(BotError):
    """Bad command arguments; the message explains the correct form."""

    def __init__(self, message: str):
        super().__init__(message, user_message=message)


class InvalidAmount(InvalidInput, ValueError):
    def __init__(self, amount):
        super().__init__(f"⚠️ Amount must be a positive whole number (got {amount!r})")
        self.amount = amount


class InsufficientFunds(BotError):
    def __init__(self, required: int, available: int, currency: str = "₦"):
        self.required = int(required)
        self.available = int(available)
        self.shortfall = max(0, self.required - self.available)
        text = (
            f"🚫 *Insufficient balance*\n\n"
            f"💵 Balance: {currency}{self.available:,}\n"
            f"💸 Required: {currency}{self.required:,}\n"
            f"📉 Short by: {currency}{self.shortfall:,}"
        )
        super().__init__(text, user_message=text)


class RateLimited(BotError):
    user_message = "⏳ Slow down! You're sending commands too fast. Try again in a few seconds."


class NotAuthorized(BotError):
    user_message = "⛔ Access denied. You are not allowed to use this command."


class NotFound(BotError):
    def __init__(self, message: str):
        super().__init__(message, user_message=message)


class StoreUnavailable(BotError):
    user_message = "⚠️ The database is unavailable right now. Please try again later."


class ExternalFetchFailure(BotError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class DuplicateRegistration(BotError):
    pass


class CronParseError(BotError, ValueError):
    pass
