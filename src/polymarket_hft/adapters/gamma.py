from __future__ import annotations
import json
from typing import List, Optional

import httpx


def _json_list(val) -> list:
    if isinstance(val, list):
        return val
    if isinstance(val, str) and val:
        try:
            out = json.loads(val)
        except ValueError:
            return []
        return out if isinstance(out, list) else []
    return []


class GammaAdapter:
    """Market discovery over the Gamma catalog.

    `search_markets` returns markets in the feed shape the scanner consumes:
    ``{condition_id, question_id, question, tokens: [{token_id, outcome, price}],
    end_date_iso, active, closed, neg_risk, volume, liquidity, slug}``.
    Gamma answers either with that shape or with its camelCase one
    (``conditionId``, ``clobTokenIds``, ``outcomes``, ``outcomePrices``,
    ``endDate``); both are accepted.
    """

    def __init__(self, base_url: str, limit: int = 10, timeout: float = 15.0):
        self.base_url = base_url.rstrip("/")
        self.limit = limit
        self.timeout = timeout
        self.call_count = 0

    def reset_call_count(self):
        self.call_count = 0

    def _counted_get(self, client: httpx.Client, url: str, **kwargs):
        self.call_count += 1
        return client.get(url, **kwargs)

    @staticmethod
    def _tokens(m: dict) -> list:
        tokens = m.get("tokens")
        if isinstance(tokens, list) and tokens:
            out = []
            for t in tokens:
                if not isinstance(t, dict):
                    continue
                try:
                    price = float(t.get("price") or 0.0)
                except (TypeError, ValueError):
                    price = 0.0
                out.append({"token_id": str(t.get("token_id", "")), "outcome": str(t.get("outcome", "")), "price": price})
            return out

        ids = _json_list(m.get("clobTokenIds"))
        outcomes = _json_list(m.get("outcomes"))
        prices = _json_list(m.get("outcomePrices"))
        out = []
        for i, tid in enumerate(ids):
            try:
                price = float(prices[i]) if i < len(prices) else 0.0
            except (TypeError, ValueError):
                price = 0.0
            out.append({
                "token_id": str(tid),
                "outcome": str(outcomes[i]) if i < len(outcomes) else "",
                "price": price,
            })
        return out

    @classmethod
    def to_feed_market(cls, m: dict) -> Optional[dict]:
        if not isinstance(m, dict):
            return None
        condition_id = m.get("condition_id") or m.get("conditionId")
        if not condition_id:
            return None
        return {
            "condition_id": str(condition_id),
            "question_id": str(m.get("question_id") or m.get("questionID") or ""),
            "question": str(m.get("question", "")),
            "tokens": cls._tokens(m),
            "end_date_iso": str(m.get("end_date_iso") or m.get("endDate") or ""),
            "active": bool(m.get("active", False)),
            "closed": bool(m.get("closed", False)),
            "neg_risk": m.get("neg_risk", m.get("negRisk")),
            "volume": str(m.get("volume") or "0"),
            "liquidity": str(m.get("liquidity") or "0"),
            "slug": str(m.get("slug", "")),
        }

    def search_markets(self, query: str) -> List[dict]:
        params = {"_limit": str(self.limit), "active": "true", "closed": "false", "_q": query}
        with httpx.Client(timeout=self.timeout) as client:
            r = self._counted_get(client, f"{self.base_url}/markets", params=params)
            if r.status_code != 200:
                return []
            arr = r.json()

        out: List[dict] = []
        for m in arr if isinstance(arr, list) else []:
            fm = self.to_feed_market(m)
            if fm:
                out.append(fm)
        return out
