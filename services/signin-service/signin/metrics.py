"""Prometheus collectors for sign-in outcomes."""

from __future__ import annotations

from prometheus_client import Counter

SIGNIN_OUTCOMES = Counter(
    "signin_requests_total",
    "Sign-in attempts by terminal outcome.",
    ["outcome"],
)

ACCOUNTS_PROVISIONED = Counter(
    "signin_accounts_provisioned_total",
    "Accounts created on a first sign-in.",
)
