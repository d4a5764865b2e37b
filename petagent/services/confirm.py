"""Human-confirmation contract used to gate sensitive tool calls."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConfirmOptions:
    title: str = "需要确认"
    kind: str = "warning"
    ok_label: str = "允许"
    cancel_label: str = "拒绝"


# Resolves False when the user declines or closes the dialog.
Confirmer = Callable[[str, ConfirmOptions], Awaitable[bool]]


async def decline_all(message: str, options: ConfirmOptions) -> bool:
    """Confirmer used when no UI is attached: every gated call is declined."""
    logger.warning(f"No confirmation UI attached, declining: {options.title}")
    return False


async def approve_all(message: str, options: ConfirmOptions) -> bool:
    """Confirmer for unattended/trusted contexts."""
    return True
