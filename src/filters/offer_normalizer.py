# src/filters/offer_normalizer.py

"""Normalize promotional-offer payloads into plain label strings.

Providers hand offers over in several shapes:

* a plain label string (``"2x1"``),
* a JSON-encoded string of one of the object shapes below,
* an object keyed by store with string values
  (``{"COTO": "2x1", "DIA": "30% OFF"}``),
* an object keyed by store with ``{"etiqueta": label}`` values.

Everything past this module sees only labels.
"""

import json
import logging
from typing import Any, cast

logger = logging.getLogger("chango.offers")

_LABEL_KEYS: tuple[str, ...] = ("etiqueta", "label")


def _decode(raw: object) -> object:
    """Turn a JSON-encoded payload into its object, else return as is."""
    if not isinstance(raw, str):
        return raw
    text = raw.strip()
    if not text.startswith(("{", "[")):
        return text
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        logger.debug("Offer payload is not valid JSON: %r", text[:60])
        return text


def _label_of(value: object) -> str:
    """Extract a label from a single offer value."""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict):
        entry = cast(dict[str, Any], value)
        for key in _LABEL_KEYS:
            label = entry.get(key)
            if isinstance(label, str) and label.strip():
                return label.strip()
    return ""


def offers_by_store(raw: object) -> dict[str, str]:
    """Map store label (upper-cased) to its offer label.

    Shapes without a store key (plain strings, lists) yield ``{}``.
    """
    decoded = _decode(raw)
    if not isinstance(decoded, dict):
        return {}
    result: dict[str, str] = {}
    for store, value in cast(dict[str, Any], decoded).items():
        label = _label_of(value)
        if label:
            result[str(store).strip().upper()] = label
    return result


def normalize_offers(raw: object) -> tuple[str, ...]:
    """Return the distinct offer labels in first-seen order."""
    if raw is None:
        return ()
    decoded = _decode(raw)

    values: list[object]
    if isinstance(decoded, dict):
        values = list(cast(dict[str, Any], decoded).values())
    elif isinstance(decoded, list):
        values = list(cast(list[Any], decoded))
    else:
        values = [decoded]

    labels: list[str] = []
    for value in values:
        label = _label_of(value)
        if label and label not in labels:
            labels.append(label)
    return tuple(labels)
