"""Attribute remapping from an external data shape into attribute names.

Each mapping entry is `attribute -> path`; the path is evaluated as the
JSONPath expression `$.{path}` against the input document and the first
match is stored under the attribute name. The special attribute `$`
merges the keys of a matched object into the result (objects only).
Paths that fail to parse or match nothing are skipped.
"""

import logging
from typing import Any, Dict

from jsonpath_ng import parse as parse_jsonpath
from jsonpath_ng.exceptions import JsonPathLexerError, JsonPathParserError

logger = logging.getLogger(__name__)

MERGE_KEY = "$"


def map_json(attribute_mapping: Dict[str, str], data: Any) -> Dict[str, Any]:
    """Apply an attribute mapping to a decoded JSON document."""
    result: Dict[str, Any] = {}
    for key, mapped_key in attribute_mapping.items():
        try:
            expression = parse_jsonpath(f"$.{mapped_key}")
        except (JsonPathLexerError, JsonPathParserError) as e:
            logger.warning("selector failed for %s: %s", mapped_key, e)
            continue
        matches = expression.find(data)
        if not matches:
            logger.debug("nothing found at %s", mapped_key)
            continue
        value = matches[0].value
        if key != MERGE_KEY:
            result[key] = value
            continue
        if isinstance(value, dict):
            result.update(value)
        else:
            logger.debug("merge source at %s is not an object, skipped", mapped_key)
    return result
