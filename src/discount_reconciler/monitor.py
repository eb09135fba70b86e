"""
Checkout-side reconciliation monitor.

Observes checkout snapshots pushed by the checkout runtime and recomputes
whether the total matches subtotal minus allocated discounts. Observe-only:
it never changes the cart, and it never raises, because checkout must not be
interrupted by diagnostics. Anomalies become a warning banner.

States::

    CHECKING -> WAITING_AUTO -> NO_DISCOUNT
             -> APPLIED | CALCULATION_WARNING | CALCULATION_ERROR

WAITING_AUTO is entered at most once per monitor. The store applies
automatic discounts asynchronously after cart changes, so the first empty
snapshot arms a one-shot timer and the snapshot is checked again when it
fires.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional, Tuple, Union

from discount_reconciler.config import ReconcilerSettings
from discount_reconciler.models import (
    AMOUNT_TOLERANCE,
    CheckoutSnapshot,
    VerificationResult,
    Verdict,
)
from discount_reconciler.verification import verify_snapshot

logger = logging.getLogger(__name__)


class MonitorState(str, Enum):
    """Reconciliation monitor states."""
    CHECKING = "checking"
    WAITING_AUTO = "waiting_auto"
    NO_DISCOUNT = "no_discount"
    APPLIED = "applied"
    CALCULATION_WARNING = "calculation_warning"
    CALCULATION_ERROR = "calculation_error"


@dataclass(frozen=True)
class BannerLine:
    title: str
    amount: Decimal
    auto_applied: bool = False


@dataclass(frozen=True)
class Banner:
    """What the checkout surface should display."""
    status: str  # info, success, warning, critical
    title: str
    message: str = ""
    currency_code: str = "USD"
    lines: Tuple[BannerLine, ...] = ()
    total_savings: Optional[Decimal] = None


@dataclass(frozen=True)
class MonitorView:
    state: MonitorState
    banner: Optional[Banner] = None
    verification: Optional[VerificationResult] = None


Snapshot = Union[CheckoutSnapshot, Mapping[str, Any]]


class ReconciliationMonitor:
    """Watches live checkout state for silent discount miscalculations."""

    def __init__(
        self,
        auto_wait_seconds: float = 3.0,
        tolerance: Decimal = AMOUNT_TOLERANCE,
        error_threshold: Decimal = Decimal("1.00"),
        on_render: Optional[Callable[[MonitorView], None]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.auto_wait_seconds = auto_wait_seconds
        self.tolerance = tolerance
        self.error_threshold = error_threshold
        self.on_render = on_render
        self._loop = loop
        self._timer: Optional[asyncio.TimerHandle] = None
        self._snapshot: Optional[CheckoutSnapshot] = None
        self._view = MonitorView(state=MonitorState.CHECKING)
        self._history: List[MonitorState] = [MonitorState.CHECKING]

    @classmethod
    def from_settings(cls, settings: ReconcilerSettings, **kwargs: Any) -> "ReconciliationMonitor":
        return cls(
            auto_wait_seconds=settings.monitor_auto_wait_seconds,
            tolerance=settings.amount_tolerance,
            error_threshold=settings.monitor_error_threshold,
            **kwargs,
        )

    @property
    def state(self) -> MonitorState:
        return self._view.state

    @property
    def view(self) -> MonitorView:
        return self._view

    @property
    def history(self) -> List[MonitorState]:
        return list(self._history)

    def observe(self, snapshot: Snapshot) -> MonitorView:
        """Re-evaluate after a cart, discount or cost change."""
        try:
            if not isinstance(snapshot, CheckoutSnapshot):
                snapshot = CheckoutSnapshot.from_payload(snapshot)
            self._snapshot = snapshot
            return self._evaluate(snapshot)
        except Exception:
            logger.exception("Checkout snapshot could not be evaluated; keeping previous view")
            return self._view

    def close(self) -> None:
        """Cancel a pending timer, e.g. when the checkout surface unmounts."""
        self._cancel_timer()

    def _evaluate(self, snapshot: CheckoutSnapshot) -> MonitorView:
        if snapshot.allocations:
            self._cancel_timer()
            return self._reconcile(snapshot)

        if snapshot.subtotal_amount <= 0:
            if self.state == MonitorState.CHECKING:
                return self._view
            return self._transition(MonitorState.NO_DISCOUNT)

        if self.state == MonitorState.WAITING_AUTO:
            return self._view

        if MonitorState.WAITING_AUTO not in self._history:
            if self._arm_timer():
                return self._transition(
                    MonitorState.WAITING_AUTO,
                    Banner(
                        status="info",
                        title="Checking for automatic discounts...",
                        currency_code=snapshot.currency_code,
                    ),
                )

        return self._transition(MonitorState.NO_DISCOUNT)

    def _reconcile(self, snapshot: CheckoutSnapshot) -> MonitorView:
        result = verify_snapshot(snapshot, self.tolerance)
        currency = snapshot.currency_code

        logger.debug(
            f"Checkout verification: subtotal {currency} {result.subtotal}, "
            f"discount {result.total_discount}, expected {result.expected_total}, "
            f"actual {result.actual_total} ({result.verdict.value})"
        )

        if result.verdict == Verdict.MISMATCH:
            severe = abs(result.delta) >= self.error_threshold
            state = MonitorState.CALCULATION_ERROR if severe else MonitorState.CALCULATION_WARNING
            logger.warning(
                f"Checkout total {currency} {result.actual_total} is below expected "
                f"{result.expected_total} by {-result.delta}",
                extra={"stage": "checkout_monitor", "delta": str(result.delta)},
            )
            banner = Banner(
                status="critical" if severe else "warning",
                title="Discount calculation issue detected",
                message="Please refresh the page or contact support.",
                currency_code=currency,
            )
            return self._transition(state, banner, result)

        is_automatic = (
            any(a.target_type.lower() == "automatic" for a in snapshot.allocations)
            or not snapshot.discount_codes
        )
        message = ""
        if result.verdict == Verdict.SHIPPING_TAX_ADJUSTED:
            message = f"Total includes {currency} {result.delta:.2f} shipping and taxes."
        banner = Banner(
            status="success",
            title="Automatic Discount Applied!" if is_automatic else "Discount Applied!",
            message=message,
            currency_code=currency,
            lines=tuple(
                BannerLine(a.title, a.discounted_amount, auto_applied=is_automatic)
                for a in snapshot.allocations
            ),
            total_savings=result.total_discount,
        )
        return self._transition(MonitorState.APPLIED, banner, result)

    def _arm_timer(self) -> bool:
        try:
            loop = self._loop or asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; skipping automatic discount wait")
            return False
        self._timer = loop.call_later(self.auto_wait_seconds, self._on_auto_wait_elapsed)
        return True

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_auto_wait_elapsed(self) -> None:
        self._timer = None
        if self.state != MonitorState.WAITING_AUTO:
            return
        try:
            if self._snapshot is not None and self._snapshot.allocations:
                self._reconcile(self._snapshot)
            else:
                self._transition(MonitorState.NO_DISCOUNT)
        except Exception:
            logger.exception("Automatic discount re-check failed")

    def _transition(
        self,
        state: MonitorState,
        banner: Optional[Banner] = None,
        verification: Optional[VerificationResult] = None,
    ) -> MonitorView:
        if state != self._view.state:
            self._history.append(state)
        self._view = MonitorView(state=state, banner=banner, verification=verification)
        if self.on_render is not None:
            try:
                self.on_render(self._view)
            except Exception:
                logger.exception("Checkout render callback failed")
        return self._view
