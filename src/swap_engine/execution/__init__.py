"""Swap providers: the live SideShift client and a paper simulator."""

from swap_engine.execution.base import SwapProvider, SwapResult

__all__ = ["SwapProvider", "SwapResult"]
