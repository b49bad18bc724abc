# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import base64
import copy
import gzip
import json
import math
import re
import time
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple

from litellm import token_counter
from pydantic import BaseModel

from framesense_pipeline.models import DetailLevel, ServiceKind, StripLevel, Tier
from framesense_pipeline.policy import TIER_POLICIES, get_tier_policy
from framesense_pipeline.utils.logger import logger


class ShapingStrategy(NamedTuple):
    strip_level: StripLevel
    remove_redundancy: bool
    normalize_tokens: bool


SHAPING_STRATEGIES: Dict[ServiceKind, ShapingStrategy] = {
    ServiceKind.REASONING: ShapingStrategy(StripLevel.AGGRESSIVE, True, True),
    ServiceKind.VISION_WEB: ShapingStrategy(StripLevel.MODERATE, True, False),
    ServiceKind.VISION_LOGOS: ShapingStrategy(StripLevel.MODERATE, True, False),
    ServiceKind.VISION_OBJECTS: ShapingStrategy(StripLevel.LIGHT, False, False),
    ServiceKind.VISION_TEXT: ShapingStrategy(StripLevel.LIGHT, False, False),
    ServiceKind.ENHANCED_OCR: ShapingStrategy(StripLevel.LIGHT, False, False),
    ServiceKind.PLUGIN: ShapingStrategy(StripLevel.LIGHT, True, False),
}
DEFAULT_STRATEGY = ShapingStrategy(StripLevel.LIGHT, False, False)

# Bookkeeping fields dropped at each strip level (levels are cumulative)
STRIPPED_FIELDS: Dict[StripLevel, Tuple[str, ...]] = {
    StripLevel.NONE: (),
    StripLevel.LIGHT: ("system_fingerprint",),
    StripLevel.MODERATE: ("system_fingerprint", "object", "request_id"),
    StripLevel.AGGRESSIVE: ("system_fingerprint", "object", "request_id", "id", "created", "model"),
}
TOKEN_USAGE_FIELDS = ("prompt_tokens", "completion_tokens")

# Top-level provider fields that describe the call rather than the answer
METADATA_FIELDS = ("id", "created", "model", "object", "system_fingerprint", "request_id", "usage")

SENSITIVE_FIELDS = ("id", "created", "system_fingerprint", "request_id")

# Optional detail collections removed entirely at the basic detail level
OPTIONAL_DETAIL_FIELDS = ("pages", "partial_matches", "visually_similar", "bounding_boxes")

DETAIL_ITEM_LIMITS: Dict[DetailLevel, Optional[int]] = {
    DetailLevel.BASIC: 3,
    DetailLevel.STANDARD: 10,
    DetailLevel.FULL: None,
}

IDENTITY_FIELDS = ("entity_id", "entityId", "mid", "description", "text", "name", "label")
REGION_FIELDS = ("bounding_poly", "boundingPoly", "bounding_box", "boundingBox")

TEXT_FIELDS = ("content", "answer", "text", "description", "summary")
LEAD_IN_PHRASES = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"I can see that ",
        r"It appears that ",
        r"It looks like ",
        r"In this image, ",
        r"Based on the image, ",
        r"Looking at this image, ",
        r"From what I can observe, ",
        r"As shown in the image, ",
    )
]
_WHITESPACE = re.compile(r"\s+")
_REPEATED_PERIODS = re.compile(r"(\. ){2,}")

CHARS_PER_TOKEN = 4
MIN_STRING_LENGTH = 16
# Never dropped when a response is cut down to its byte ceiling
TRUNCATION_KEPT_FIELDS = ("service", "_truncated", "_original_size")


def json_size(value: Any) -> int:
    return len(json.dumps(value, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8"))


def _json_normal(value: Any) -> Any:
    """Round-trips through JSON so cached and fresh payloads compare equal."""
    return json.loads(json.dumps(value, default=str))


class ShapedPayload(BaseModel):
    payload: Dict[str, Any]
    original_size: int
    shaped_size: int
    tokens_saved: int = 0


class CompressedPayload(BaseModel):
    data: str
    original_size: int
    compressed_size: int
    compression_ratio: float
    algorithm: str = "gzip"


class TransmissionPayload(BaseModel):
    payload: Dict[str, Any]
    compressed: Optional[CompressedPayload] = None
    size_before: int
    size_after: int
    truncated: bool = False

    @property
    def compression_ratio(self) -> float:
        return self.compressed.compression_ratio if self.compressed else 1.0


class ResponseShaper:
    """
    Turns raw provider data into the cached envelope and the per-tier wire form.

    For the cache: bookkeeping fields are stripped per service strategy,
    repeated entities are de-duplicated, reasoning text is normalized to cut
    billed tokens, and everything lands in `{service, timestamp, data, metadata}`.

    For transmission: lists are trimmed to the tier's detail level, the payload
    is held under the tier's byte ceiling, sensitive fields are removed for tiers
    that require it, and the result is gzip-compressed when the tier asks for it.
    Transmission shaping is a pure function of its inputs, so a payload read back
    from the cache is shaped exactly like a fresh one.
    """

    def __init__(self, token_model: str = "gpt-4o", clock: Optional[Callable[[], float]] = None) -> None:
        self.token_model = token_model
        self._clock = clock or time.time
        self.metrics: Dict[str, Any] = {
            "cache_shapings": 0,
            "transmission_shapings": 0,
            "bytes_saved": 0,
            "tokens_saved": 0,
            "truncations": 0,
        }

    # ------------------------------------------------------------------ cache

    def shape_for_cache(self, raw: Dict[str, Any], service: ServiceKind) -> ShapedPayload:
        strategy = SHAPING_STRATEGIES.get(service, DEFAULT_STRATEGY)
        original = _json_normal(raw)
        original_size = json_size(original)

        stripped = self._strip_metadata(original, strategy.strip_level)
        metadata = {k: stripped.pop(k) for k in METADATA_FIELDS if k in stripped}
        data: Dict[str, Any] = stripped

        tokens_saved = 0
        if strategy.normalize_tokens:
            data, tokens_saved = self._normalize_text_fields(data)
        if strategy.remove_redundancy:
            data = self._remove_redundancy(data)

        envelope = {
            "service": service.value,
            "timestamp": self._clock(),
            "data": data,
            "metadata": metadata,
        }
        shaped_size = json_size(envelope)

        self.metrics["cache_shapings"] += 1
        self.metrics["bytes_saved"] += max(0, original_size - shaped_size)
        self.metrics["tokens_saved"] += tokens_saved
        logger.debug(
            f"Shaped {service.value} for cache: {original_size} -> {shaped_size} bytes, {tokens_saved} tokens saved"
        )
        return ShapedPayload(
            payload=envelope, original_size=original_size, shaped_size=shaped_size, tokens_saved=tokens_saved
        )

    @staticmethod
    def _strip_metadata(response: Dict[str, Any], level: StripLevel) -> Dict[str, Any]:
        stripped = {k: v for k, v in response.items() if k not in STRIPPED_FIELDS[level]}
        if level == StripLevel.AGGRESSIVE and isinstance(stripped.get("usage"), dict):
            stripped["usage"] = {k: v for k, v in stripped["usage"].items() if k not in TOKEN_USAGE_FIELDS}
        return stripped

    def _normalize_text_fields(self, data: Dict[str, Any]) -> Tuple[Dict[str, Any], int]:
        saved = 0
        result = dict(data)
        for field in TEXT_FIELDS:
            value = result.get(field)
            if isinstance(value, str) and value:
                normalized = self.normalize_text(value)
                saved += max(0, self.count_tokens(value) - self.count_tokens(normalized))
                result[field] = normalized
        return result, saved

    @staticmethod
    def normalize_text(text: str) -> str:
        normalized = _WHITESPACE.sub(" ", text)
        normalized = _REPEATED_PERIODS.sub(". ", normalized).strip()
        for pattern in LEAD_IN_PHRASES:
            normalized = pattern.sub("", normalized)
        if normalized and normalized[0].islower() and text.strip()[:1].isupper():
            normalized = normalized[0].upper() + normalized[1:]
        return normalized

    def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        try:
            return token_counter(model=self.token_model, text=text)
        except Exception as e:
            logger.debug(f"Tokenizer unavailable for {self.token_model}, estimating: {e}")
            return math.ceil(len(text) / CHARS_PER_TOKEN)

    @classmethod
    def _remove_redundancy(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: cls._remove_redundancy(v) for k, v in value.items()}
        if isinstance(value, list):
            seen = set()
            unique: List[Any] = []
            for item in value:
                key = cls._identity(item)
                if key in seen:
                    continue
                seen.add(key)
                unique.append(cls._remove_redundancy(item))
            return unique
        return value

    @staticmethod
    def _identity(item: Any) -> str:
        if isinstance(item, dict):
            name = next((item[f] for f in IDENTITY_FIELDS if item.get(f) not in (None, "")), None)
            if name is not None:
                region = next((item[f] for f in REGION_FIELDS if f in item), None)
                return json.dumps([name, region], sort_keys=True, default=str)
        return json.dumps(item, sort_keys=True, default=str)

    # ----------------------------------------------------------- transmission

    def shape_for_transmission(
        self, payload: Dict[str, Any], tier: Tier, service: ServiceKind
    ) -> TransmissionPayload:
        policy = get_tier_policy(tier) or TIER_POLICIES[Tier.FREE]
        size_before = json_size(payload)

        shaped = copy.deepcopy(payload)
        shaped = self._adjust_detail(shaped, policy.detail_level)
        shaped, truncated = self._enforce_size_limit(shaped, policy.max_response_bytes)
        if policy.strip_sensitive:
            shaped = self._strip_sensitive(shaped)

        compressed = self.compress(shaped) if policy.compress_response else None
        size_after = json_size(shaped)

        self.metrics["transmission_shapings"] += 1
        if truncated:
            self.metrics["truncations"] += 1
        logger.debug(
            f"Shaped {service.value} for {tier.value} transmission: {size_before} -> {size_after} bytes"
            + (f", compressed {compressed.compression_ratio:.2f}x" if compressed else "")
        )
        return TransmissionPayload(
            payload=shaped,
            compressed=compressed,
            size_before=size_before,
            size_after=size_after,
            truncated=truncated,
        )

    @classmethod
    def _adjust_detail(cls, value: Any, level: DetailLevel) -> Any:
        limit = DETAIL_ITEM_LIMITS[level]
        if isinstance(value, dict):
            # Region geometry is kept whole at every level
            return {
                k: v if k in REGION_FIELDS else cls._adjust_detail(v, level)
                for k, v in value.items()
                if not (level == DetailLevel.BASIC and k in OPTIONAL_DETAIL_FIELDS)
            }
        if isinstance(value, list):
            items = value if limit is None else value[:limit]
            return [cls._adjust_detail(v, level) for v in items]
        return value

    @staticmethod
    def _strip_sensitive(value: Any) -> Any:
        if isinstance(value, dict):
            cleaned = {}
            for k, v in value.items():
                if k in SENSITIVE_FIELDS:
                    continue
                if k == "usage" and isinstance(v, dict):
                    v = {uk: uv for uk, uv in v.items() if uk not in TOKEN_USAGE_FIELDS}
                cleaned[k] = ResponseShaper._strip_sensitive(v)
            return cleaned
        if isinstance(value, list):
            return [ResponseShaper._strip_sensitive(v) for v in value]
        return value

    @classmethod
    def _enforce_size_limit(cls, payload: Dict[str, Any], max_bytes: int) -> Tuple[Dict[str, Any], bool]:
        """
        Halves the largest list until the payload fits, then the longest string.
        When neither is left to shrink, the largest remaining field under `data`
        (then at the top level) is dropped, so the result always fits.
        """
        original_size = json_size(payload)
        if original_size <= max_bytes:
            return payload, False

        shaped = payload
        shaped["_truncated"] = True
        shaped["_original_size"] = original_size
        while json_size(shaped) > max_bytes:
            if cls._halve_largest_list(shaped):
                continue
            if cls._halve_longest_string(shaped):
                continue
            dropped = cls._drop_largest_field(shaped)
            if dropped is not None:
                logger.warning(f"Dropped field {dropped!r} to fit the {max_bytes} byte response limit")
                continue
            logger.warning(f"Response still {json_size(shaped)} bytes after truncation (limit {max_bytes})")
            break
        return shaped, True

    @staticmethod
    def _drop_largest_field(payload: Dict[str, Any]) -> Optional[str]:
        data = payload.get("data")
        targets = [data, payload] if isinstance(data, dict) else [payload]
        for target in targets:
            keys = [k for k in target if k not in TRUNCATION_KEPT_FIELDS]
            if keys:
                key = max(keys, key=lambda k: json_size(target[k]))
                del target[key]
                return key
        return None

    @classmethod
    def _halve_largest_list(cls, payload: Dict[str, Any]) -> bool:
        candidates = [c for c in cls._containers(payload) if isinstance(c[0][c[1]], list) and len(c[0][c[1]]) > 1]
        if not candidates:
            return False
        parent, key = max(candidates, key=lambda c: json_size(c[0][c[1]]))
        items = parent[key]
        parent[key] = items[: len(items) // 2]
        return True

    @classmethod
    def _halve_longest_string(cls, payload: Dict[str, Any]) -> bool:
        candidates = [
            c
            for c in cls._containers(payload)
            if isinstance(c[0][c[1]], str) and len(c[0][c[1]]) > 2 * MIN_STRING_LENGTH and c[1] != "service"
        ]
        if not candidates:
            return False
        parent, key = max(candidates, key=lambda c: len(c[0][c[1]]))
        text = parent[key]
        parent[key] = text[: len(text) // 2] + "..."
        return True

    @classmethod
    def _containers(cls, value: Any) -> List[Tuple[Any, Any]]:
        """(parent, key) pairs for every value nested under `value`."""
        found: List[Tuple[Any, Any]] = []
        if isinstance(value, dict):
            for k, v in value.items():
                found.append((value, k))
                found.extend(cls._containers(v))
        elif isinstance(value, list):
            for i, v in enumerate(value):
                found.append((value, i))
                found.extend(cls._containers(v))
        return found

    @staticmethod
    def compress(payload: Dict[str, Any]) -> CompressedPayload:
        raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")
        blob = gzip.compress(raw, mtime=0)
        return CompressedPayload(
            data=base64.b64encode(blob).decode("ascii"),
            original_size=len(raw),
            compressed_size=len(blob),
            compression_ratio=round(len(raw) / len(blob), 4) if blob else 1.0,
        )

    @staticmethod
    def decompress(compressed: CompressedPayload) -> Dict[str, Any]:
        return json.loads(gzip.decompress(base64.b64decode(compressed.data)).decode("utf-8"))
