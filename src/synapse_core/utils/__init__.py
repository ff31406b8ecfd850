"""Core utility functions."""

from synapse_core.utils.json_serializers import json_serializer, safe_json_parse, stable_dumps
from synapse_core.utils.text import mask_credential, mask_secret, truncate_string

__all__ = [
    "json_serializer",
    "stable_dumps",
    "safe_json_parse",
    "truncate_string",
    "mask_secret",
    "mask_credential",
]
