"""
Triggers Module

Decides whether a container update qualifies for action and renders the
text sent by notification triggers.

Architecture:
- thresholds: threshold grammar and include/exclude trigger references
- template: safe ${...} template evaluator
- Trigger: base class wiring both to the event bus
"""

from triggers.thresholds import (
    SUPPORTED_THRESHOLDS,
    Threshold,
    is_threshold_reached,
    parse_threshold,
    parse_trigger_reference,
    reference_matches_id,
)
from triggers.template import render, render_batch, render_simple
from triggers.trigger import Trigger, TriggerConfiguration

__all__ = [
    'SUPPORTED_THRESHOLDS',
    'Threshold',
    'is_threshold_reached',
    'parse_threshold',
    'parse_trigger_reference',
    'reference_matches_id',
    'render',
    'render_batch',
    'render_simple',
    'Trigger',
    'TriggerConfiguration',
]
