"""Recurrence rules: form builder, RRULE codec, evaluator and occurrence expander."""

from .occurrence_expander import expand_master, expand_masters, occurrence_id
from .rrule_codec import decode_rrule, encode_rrule, reanchor_rrule
from .rule_builder import apply_recurrence, build_recurrence_rule, check_recurrence_config

__all__ = [
    "apply_recurrence",
    "build_recurrence_rule",
    "check_recurrence_config",
    "decode_rrule",
    "encode_rrule",
    "expand_master",
    "expand_masters",
    "occurrence_id",
    "reanchor_rrule",
]
