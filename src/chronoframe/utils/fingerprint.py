# src/chronoframe/utils/fingerprint.py
from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Optional, Sequence

import numpy as np


def sha1_payload(payload: Dict[str, Any], *, arrays: Optional[Sequence[np.ndarray]] = None) -> str:
    """
    Deterministic fingerprint: sha1(canonical JSON) + raw float64 bytes of `arrays`.

    Notes:
    - JSON keys are sorted, so dict ordering does not matter.
    - Arrays are hashed by value (float64, C order), not by identity.
    """
    h = hashlib.sha1()
    h.update(json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8"))
    for a in arrays or ():
        h.update(b"|")
        h.update(np.ascontiguousarray(np.asarray(a, dtype="float64")).tobytes())
    return h.hexdigest()
