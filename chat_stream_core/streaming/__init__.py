"""Frame parsing and content reconciliation for streamed answers."""

from .parser import EventFrameParser
from .reconciler import ContentReconciler

__all__ = ["ContentReconciler", "EventFrameParser"]
