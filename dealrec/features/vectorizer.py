"""Feature vectorization pipeline for deal and user embeddings.

Text signals are mapped into a fixed-length vector with feature hashing:
each token is hashed with a 32-bit polynomial hash and the matching slot is
incremented. Device context is not hashed; it occupies a handful of fixed
slots at the start of the vector.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

import numpy as np
from loguru import logger

from ..constants import (
    DEVICE_SLOT_HOUR,
    DEVICE_SLOT_MOBILE,
    DEVICE_SLOT_MONTH,
    DEVICE_SLOT_NETWORK,
    DEVICE_SLOT_SCREEN,
    DEVICE_SLOT_WEEKDAY,
    MAX_NETWORK_SPEED_MBPS,
    MAX_SCREEN_WIDTH_PX,
    VECTOR_LEN,
)

_TOKEN_SPLIT = re.compile(r"\W+", re.ASCII)

_INT32_MASK = 0xFFFFFFFF
_INT32_SIGN = 0x80000000


def hash_token(token: str) -> int:
    """Signed 32-bit polynomial hash (``h = h * 31 + code``) of a token.

    Iterates over UTF-16 code units so that non-BMP characters hash the same
    way they do in the browser client that produced the stored vectors.
    """
    h = 0
    for char in token:
        code = ord(char)
        if code > 0xFFFF:
            code -= 0x10000
            units = (0xD800 + (code >> 10), 0xDC00 + (code & 0x3FF))
        else:
            units = (code,)
        for unit in units:
            h = (h * 31 + unit) & _INT32_MASK
    if h & _INT32_SIGN:
        h -= 1 << 32
    return h


def tokenize(text: str) -> List[str]:
    """Lower-case and split on non-word boundaries, dropping empty tokens."""
    return [token for token in _TOKEN_SPLIT.split(text.lower()) if token]


def format_number(value: Any) -> str:
    """Render numbers the way they appear in catalog text (``5`` not ``5.0``)."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def combine_vectors(vectors: Iterable[np.ndarray]) -> Optional[np.ndarray]:
    """Sum vectors element-wise and L2-normalize the result.

    All inputs must share the same length; the combiner does not check.

    Returns:
        Unit-length vector, or ``None`` when the sum has zero magnitude
        (the embedding is degenerate and must not be indexed).
    """
    vectors = list(vectors)
    if not vectors:
        logger.warning("combine_vectors called with no vectors")
        return None

    total = np.sum(np.asarray(vectors, dtype=np.float64), axis=0)
    magnitude = float(np.linalg.norm(total))
    if magnitude == 0.0:
        logger.warning("Combined vector has zero magnitude; treating as no embedding")
        return None

    return total / magnitude


@dataclass
class DeviceContext:
    """Device and time context of a recommendation request."""

    is_mobile: bool = False
    hour: int = 0
    weekday: int = 0  # 0 = Sunday
    month: int = 0  # 0 = January
    network_speed_mbps: Optional[float] = None
    screen_width: Optional[int] = None

    @classmethod
    def capture(
        cls,
        now: Optional[datetime] = None,
        is_mobile: bool = False,
        network_speed_mbps: Optional[float] = None,
        screen_width: Optional[int] = None
    ) -> "DeviceContext":
        """Build a context for ``now`` (defaults to the current local time)."""
        now = now or datetime.now()
        return cls(
            is_mobile=is_mobile,
            hour=now.hour,
            weekday=(now.weekday() + 1) % 7,
            month=now.month - 1,
            network_speed_mbps=network_speed_mbps,
            screen_width=screen_width,
        )


class FeatureVectorizer:
    """Turns text and structured signals into fixed-length vectors."""

    def __init__(self, vector_length: int = VECTOR_LEN):
        """Initialize vectorizer.

        Args:
            vector_length: Number of slots in every produced vector
        """
        if vector_length <= DEVICE_SLOT_SCREEN:
            raise ValueError(
                f"vector_length must exceed {DEVICE_SLOT_SCREEN}, got {vector_length}"
            )
        self.vector_length = vector_length

    def zeros(self) -> np.ndarray:
        return np.zeros(self.vector_length, dtype=np.float64)

    def vectorize(self, text: str) -> np.ndarray:
        """Hash every token of ``text`` into a count vector.

        Args:
            text: Arbitrary text

        Returns:
            Unnormalized vector of token counts per hashed slot
        """
        vector = self.zeros()
        for token in tokenize(text or ""):
            vector[abs(hash_token(token)) % self.vector_length] += 1
        return vector

    def vectorize_survey(self, answers: Optional[Mapping[str, Any]]) -> np.ndarray:
        """Vectorize answered survey questions.

        Args:
            answers: Mapping of question id to a row holding an ``answer``

        Returns:
            Per-slot sum of the vectorized ``"<question> <answer>"`` pairs
        """
        vector = self.zeros()
        for question, response in (answers or {}).items():
            if isinstance(response, Mapping):
                answer = response.get("answer", "")
            else:
                answer = response
            vector += self.vectorize(f"{question} {answer or ''}")
        return vector

    def vectorize_geolocation(self, geolocation: Optional[Mapping[str, Any]]) -> np.ndarray:
        """Vectorize ``"<countryCode> <ip>"``; zero vector when absent."""
        if not geolocation or not geolocation.get("countryCode"):
            return self.zeros()
        return self.vectorize(
            f"{geolocation['countryCode']} {geolocation.get('ip') or ''}"
        )

    def vectorize_device(self, device: Optional[DeviceContext]) -> np.ndarray:
        """Encode device context into fixed slots, each clamped to [0, 1]."""
        vector = self.zeros()
        if device is None:
            return vector

        vector[DEVICE_SLOT_MOBILE] = 1.0 if device.is_mobile else 0.0
        vector[DEVICE_SLOT_HOUR] = device.hour / 23
        vector[DEVICE_SLOT_WEEKDAY] = device.weekday / 6
        vector[DEVICE_SLOT_MONTH] = device.month / 11
        if device.network_speed_mbps is not None:
            vector[DEVICE_SLOT_NETWORK] = device.network_speed_mbps / MAX_NETWORK_SPEED_MBPS
        if device.screen_width is not None:
            vector[DEVICE_SLOT_SCREEN] = device.screen_width / MAX_SCREEN_WIDTH_PX

        slots = slice(DEVICE_SLOT_MOBILE, DEVICE_SLOT_SCREEN + 1)
        vector[slots] = np.clip(vector[slots], 0.0, 1.0)
        return vector

    def vectorize_deal(
        self,
        deal: Mapping[str, Any],
        description: str = "",
        product_range: str = ""
    ) -> np.ndarray:
        """Vectorize a catalog deal with its merchant text.

        Args:
            deal: Deal row with ``merchantName``, ``cashbackType`` and ``cashback``
            description: Merchant description text
            product_range: Merchant product range text

        Returns:
            Hashed count vector
        """
        text = " ".join([
            str(deal.get("merchantName", "")),
            str(deal.get("cashbackType", "")),
            format_number(deal.get("cashback", "")),
            description or "",
            product_range or "",
        ])
        return self.vectorize(text)

    def vectorize_profile(
        self,
        profile: Mapping[str, Any],
        device: Optional[DeviceContext] = None
    ) -> Optional[np.ndarray]:
        """Build the combined user embedding for the vector pathway.

        Args:
            profile: User profile with ``interests``, ``shoppingFrequency``,
                ``surveyResponses`` and ``geolocation``
            device: Optional device context

        Returns:
            Normalized user vector, or ``None`` if degenerate
        """
        interests = " ".join(str(i) for i in profile.get("interests") or [])
        frequency = profile.get("shoppingFrequency") or ""
        logger.debug(f"Vectorizing profile with {len(profile.get('interests') or [])} interests")

        return combine_vectors([
            self.vectorize(f"{interests} {frequency}"),
            self.vectorize_survey(profile.get("surveyResponses")),
            self.vectorize_geolocation(profile.get("geolocation")),
            self.vectorize_device(device),
        ])

    def describe(self, vector: np.ndarray) -> Dict[str, Any]:
        """Summary statistics for logging and debugging."""
        return {
            "length": int(vector.shape[0]),
            "nonzero": int(np.count_nonzero(vector)),
            "norm": float(np.linalg.norm(vector)),
        }
