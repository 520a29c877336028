"""
Asset table: symbol -> exchange asset index and size precision.

The index is part of every signed order wire, so an unknown symbol is an
EncodingError and never falls back to a default index.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List

from basket_engine.core.errors import EncodingError


@dataclass(frozen=True)
class AssetInfo:
    """Per-asset metadata from the exchange universe."""

    name: str
    index: int
    sz_decimals: int
    max_leverage: int = 50
    only_isolated: bool = False


class AssetTable:
    """Fixed symbol -> index mapping shared by the encoder and the exchange."""

    def __init__(self, assets: Iterable[AssetInfo]):
        self._by_name: Dict[str, AssetInfo] = {}
        for info in assets:
            if info.name in self._by_name:
                raise EncodingError(f"duplicate asset symbol {info.name}")
            self._by_name[info.name] = info

    @classmethod
    def from_meta(cls, meta: Dict) -> "AssetTable":
        """
        Build from perp universe metadata.

        Args:
            meta: Response of the `meta` info request (or meta part of metaAndAssetCtxs)
        """
        return cls(
            AssetInfo(
                name=u["name"],
                index=i,
                sz_decimals=int(u.get("szDecimals", 0)),
                max_leverage=int(u.get("maxLeverage", 50)),
                only_isolated=bool(u.get("onlyIsolated", False)),
            )
            for i, u in enumerate(meta.get("universe", []))
        )

    def get(self, symbol: str) -> AssetInfo:
        try:
            return self._by_name[symbol]
        except KeyError:
            raise EncodingError(f"unknown asset symbol {symbol!r}") from None

    def index_of(self, symbol: str) -> int:
        return self.get(symbol).index

    def sz_decimals(self, symbol: str) -> int:
        return self.get(symbol).sz_decimals

    def symbols(self) -> List[str]:
        return list(self._by_name)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._by_name

    def __len__(self) -> int:
        return len(self._by_name)
