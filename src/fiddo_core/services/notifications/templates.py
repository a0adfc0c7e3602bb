"""Notification templates for loyalty events."""

from __future__ import annotations

import html
from dataclasses import dataclass


@dataclass
class RenderedTemplate:
    subject: str
    text_body: str
    html_body: str


@dataclass
class RenderedPush:
    title: str
    body: str


def render_validation_email(business_name: str, validation_url: str) -> RenderedTemplate:
    subject = f"Welcome to {business_name} - confirm your loyalty account"
    text_body = "\n".join(
        [
            f"Welcome to {business_name}!",
            "",
            "You have joined our loyalty programme.",
            "Confirm your account by opening the link below:",
            validation_url,
            "",
            "You can ask for your data to be deleted at any time.",
        ]
    )
    safe_name = html.escape(business_name)
    safe_url = html.escape(validation_url, quote=True)
    html_body = f"""<html>
  <body>
    <h2>Welcome to {safe_name}!</h2>
    <p>You have joined our loyalty programme.</p>
    <p><a href="{safe_url}">Confirm my account</a></p>
    <p style="font-size: 12px; color: #666;">Link: {safe_url}</p>
  </body>
</html>"""
    return RenderedTemplate(subject=subject, text_body=text_body, html_body=html_body)


def render_points_credited(
    business_name: str,
    *,
    points_earned: int,
    balance: int,
    points_for_reward: int,
    reward_description: str,
) -> RenderedTemplate:
    remaining = max(points_for_reward - balance, 0)
    if balance >= points_for_reward:
        reward_line = f"Your reward is ready: {reward_description}"
    else:
        reward_line = f"Only {remaining} points to go before your reward."

    subject = f"{business_name} - +{points_earned} points earned"
    text_body = "\n".join(
        [
            "Thanks for your visit!",
            "",
            f"You earned +{points_earned} points.",
            f"Balance: {balance} points",
            reward_line,
        ]
    )
    html_body = f"""<html>
  <body>
    <h2>Thanks for your visit!</h2>
    <p>You earned <strong>+{points_earned}</strong> points.</p>
    <p><strong>Balance: {balance} points</strong></p>
    <p>{html.escape(reward_line)}</p>
    <p style="font-size: 12px; color: #666;">{html.escape(business_name)} | Loyalty programme</p>
  </body>
</html>"""
    return RenderedTemplate(subject=subject, text_body=text_body, html_body=html_body)


def render_credit_push(business_name: str, points_delta: int, balance: int) -> RenderedPush:
    return RenderedPush(title=business_name, body=f"+{points_delta} points! Balance: {balance} pts")


def render_reward_available_push(business_name: str, reward_description: str) -> RenderedPush:
    return RenderedPush(title=business_name, body=f"Reward available: {reward_description}")


def render_reward_redeemed_push(business_name: str, reward_label: str, remaining: int) -> RenderedPush:
    return RenderedPush(title=business_name, body=f"Reward used: {reward_label}. Balance: {remaining} pts")


def render_gift_claimed_push(business_name: str, points: int) -> RenderedPush:
    return RenderedPush(title=business_name, body=f"Your gift of {points} points was claimed")


def render_gift_refunded_push(business_name: str, points: int) -> RenderedPush:
    return RenderedPush(title=business_name, body=f"Your unclaimed gift expired; {points} points are back")
