"""Derive a device descriptor from a ``User-Agent`` header."""

from __future__ import annotations

from user_agents import parse

from ..domain.credentials import DeviceDescriptor


def parse_device(user_agent: str | None) -> DeviceDescriptor:
    """Return device family, OS family and client name; blanks when unknown."""
    if not user_agent or not user_agent.strip():
        return DeviceDescriptor()
    agent = parse(user_agent)
    return DeviceDescriptor(
        device=agent.device.family or "",
        os=agent.os.family or "",
        client_name=agent.browser.family or "",
    )
