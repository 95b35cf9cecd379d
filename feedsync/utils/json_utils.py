"""
JSON utilities for handling advanced serialization needs.

Used for the metrics blob stored alongside sync status rows.
"""

import json
import logging
from datetime import datetime, date

log = logging.getLogger(__name__)

def _json_serial(obj):
    """JSON serializer for objects not serializable by default JSON encoder."""
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if hasattr(obj, 'to_dict'):
        return obj.to_dict()
    return str(obj)

def dumps(data, **kwargs):
    """JSON dumps with handling for datetimes and objects exposing to_dict()."""
    return json.dumps(data, default=_json_serial, **kwargs)

def loads(json_str, **kwargs):
    """JSON loads that treats empty input as an empty dict.

    Raises:
        json.JSONDecodeError: If parsing fails
    """
    if not json_str:
        return {}
    return json.loads(json_str, **kwargs)
