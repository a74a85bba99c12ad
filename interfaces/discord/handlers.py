from __future__ import annotations

import logging
from typing import Optional

import discord
from discord.ext import commands

from application.notifications import BufferedNotifier
from application.session import ExternalContext, Session
from domain.errors import SessionError
from domain.models import Profile

logger = logging.getLogger(__name__)


def _build_external_context(user: discord.abc.User) -> ExternalContext:
    """Create an `ExternalContext` from a Discord user."""

    return ExternalContext(
        provider="discord",
        provider_user_id=str(user.id),
        display_name=user.display_name or user.name,
    )


def _format_profile(profile: Profile) -> str:
    lines = [
        f"{profile.display_name} <{profile.email or 'no email'}>",
        f"Balance: ₹{profile.balance:,}",
        f"Member since: {profile.created_at:%d %b %Y}",
        f"Onboarding: {'complete' if profile.onboarding_completed else 'pending'}",
    ]
    if profile.risk_tolerance:
        lines.append(f"Risk tolerance: {profile.risk_tolerance}")
    if profile.investment_goals:
        lines.append(f"Goals: {profile.investment_goals}")
    if profile.monthly_income:
        lines.append(f"Monthly income: {profile.monthly_income}")
    if profile.preferred_sectors:
        lines.append(f"Sectors: {', '.join(sorted(profile.preferred_sectors))}")
    if profile.subscription_tier:
        lines.append(f"Plan: {profile.subscription_tier.value}")
    return "\n".join(lines)


def create_discord_bot(session: Session, notifier: BufferedNotifier) -> commands.Bot:
    """
    Configure and return a Discord bot that works as a personal console
    for the process's trading session: sign in, inspect the profile and
    move virtual cash.

    Only Discord-specific concerns live here; everything else is done by
    the `Session`.
    """

    intents = discord.Intents.default()
    intents.message_content = True

    # Disable the default help command so we can provide our own `!help`.
    bot = commands.Bot(command_prefix="!", intents=intents, help_command=None)

    async def flush_notices(ctx: commands.Context) -> None:
        for notice in notifier.drain():
            await ctx.send(notice.text)

    @bot.event
    async def on_ready():
        logger.info("Discord bot logged in as %s (id=%s)", bot.user, bot.user.id)

    @bot.event
    async def on_command_error(ctx: commands.Context, error: commands.CommandError):
        original = getattr(error, "original", error)
        if isinstance(original, (SessionError, ValueError)):
            await ctx.send(str(original))
        elif isinstance(error, (commands.MissingRequiredArgument, commands.BadArgument)):
            await ctx.send(f"{error}\nType !help to see available commands.")
        else:
            logger.error("Command %s failed: %s", ctx.command, error)
            await ctx.send("Something went wrong. Please try again.")
        await flush_notices(ctx)

    @bot.command(name="start")
    async def start_cmd(ctx: commands.Context):
        mode = "demo mode" if session.state.is_demo else "live accounts"
        await ctx.send(
            f"Welcome to TradeKaro ({mode})!\n"
            "Use !login or !signup to get started.\n"
            "Type !help to see available commands."
        )

    @bot.command(name="help")
    async def help_cmd(ctx: commands.Context):
        await ctx.send(
            "!signup <email> <password> <name>  - create an account\n"
            "!login <email> <password>          - sign in\n"
            "!link                              - sign in with your Discord account\n"
            "!logout                            - sign out\n"
            "!profile                           - show your profile\n"
            "!balance                           - show your virtual cash\n"
            "!buy <amount>                      - spend <amount> of virtual cash\n"
            "!sell <amount>                     - add <amount> of virtual cash\n"
            "!onboard <risk> <income> [goals]   - finish onboarding\n"
            "!sectors <sector> [sector ...]     - set preferred sectors\n"
            "!plan <free|premium|pro>           - change subscription plan\n"
        )

    @bot.command(name="signup")
    async def signup_cmd(ctx: commands.Context, email: str, password: str, *, name: str):
        await session.sign_up(email, password, name)
        await flush_notices(ctx)

    @bot.command(name="login")
    async def login_cmd(ctx: commands.Context, email: str, password: str):
        await session.login(email, password)
        await flush_notices(ctx)

    @bot.command(name="link")
    async def link_cmd(ctx: commands.Context):
        await session.sign_in_external(_build_external_context(ctx.author))
        await flush_notices(ctx)

    @bot.command(name="logout")
    async def logout_cmd(ctx: commands.Context):
        await session.logout()
        await flush_notices(ctx)

    @bot.command(name="profile")
    async def profile_cmd(ctx: commands.Context):
        profile = session.profile
        if profile is None:
            await ctx.send("Not signed in. Use !login or !signup.")
            return
        await ctx.send(_format_profile(profile))

    @bot.command(name="balance")
    async def balance_cmd(ctx: commands.Context):
        profile = session.profile
        if profile is None:
            await ctx.send("Not signed in. Use !login or !signup.")
            return
        await ctx.send(f"Available cash: ₹{profile.balance:,}")

    @bot.command(name="buy")
    async def buy_cmd(ctx: commands.Context, amount: int):
        if amount <= 0:
            await ctx.send("Amount must be greater than zero.")
            return
        new_balance = await session.adjust_balance(-amount)
        await ctx.send(f"Spent ₹{amount:,}. Available cash: ₹{new_balance:,}")
        await flush_notices(ctx)

    @bot.command(name="sell")
    async def sell_cmd(ctx: commands.Context, amount: int):
        if amount <= 0:
            await ctx.send("Amount must be greater than zero.")
            return
        new_balance = await session.adjust_balance(amount)
        await ctx.send(f"Received ₹{amount:,}. Available cash: ₹{new_balance:,}")
        await flush_notices(ctx)

    @bot.command(name="onboard")
    async def onboard_cmd(
        ctx: commands.Context,
        risk: str,
        income: str,
        *,
        goals: Optional[str] = None,
    ):
        answers = {
            "risk_tolerance": risk,
            "monthly_income": income,
            "onboarding_completed": True,
            "completed_at": discord.utils.utcnow(),
        }
        if goals:
            answers["investment_goals"] = goals
        await session.update_profile(answers)
        await ctx.send("Welcome to TradeKaro! Your account is ready.")
        await flush_notices(ctx)

    @bot.command(name="sectors")
    async def sectors_cmd(ctx: commands.Context, *sectors: str):
        if not sectors:
            await ctx.send("Name at least one sector.")
            return
        await session.update_profile({"preferred_sectors": sectors})
        await ctx.send(f"Preferred sectors: {', '.join(sorted(set(sectors)))}")
        await flush_notices(ctx)

    @bot.command(name="plan")
    async def plan_cmd(ctx: commands.Context, tier: str):
        await session.update_profile({"subscription_tier": tier.lower()})
        await ctx.send(f"Subscription plan set to {tier.lower()}.")
        await flush_notices(ctx)

    return bot
