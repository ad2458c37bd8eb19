"""
Report Export — Console Table and TSV Output
============================================

Column-configured formatting of UnifiedStatusSnapshot rows.

  • Console: short headers, fixed precision, padded columns joined by " | ".
  • TSV: full column names, 6 decimals for return/fee/drawdown/gain/loss
    columns and 2 decimals elsewhere, written to exports/<protocol>/.

File names: <protocol>_<param1>_..._<paramN>_<YYYYMMDD_HHMMSS>.tsv with
parameters lower-cased, dashes dropped and "%" spelled "pct".
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Optional, Union

PRECISE_COLUMN_MARKERS = ("return", "fees", "drawdown", "gain", "loss")


@dataclass(frozen=True)
class ColumnConfig:
    name: str
    pad: int
    kind: str  # "number" | "string"
    header_console: str
    fixed: Optional[int] = None
    attr: Optional[str] = None  # snapshot attribute when it differs from name

    @property
    def source(self) -> str:
        return self.attr or self.name


COLUMNS: List[ColumnConfig] = [
    ColumnConfig("timestamp", 16, "string", "time"),
    ColumnConfig("asset_composition", 12, "string", "assets"),
    ColumnConfig("asset_amounts", 22, "string", "amounts"),
    ColumnConfig("total_portfolio_value", 10, "number", "value", fixed=0),
    ColumnConfig("pnl", 8, "number", "pnl", fixed=0),
    ColumnConfig("return", 8, "number", "return%", fixed=3, attr="return_pct"),
    ColumnConfig("apr", 8, "number", "apr%", fixed=3),
    ColumnConfig("net_gain_vs_hold", 8, "number", "vs_hold", fixed=0),
    ColumnConfig("capital_used_in_trading", 10, "number", "cap_used", fixed=0),
    ColumnConfig("total_capital_locked", 10, "number", "cap_lock", fixed=0),
    ColumnConfig("lp_fees_earned", 8, "number", "lp_fees", fixed=2),
    ColumnConfig("trading_fees_paid", 9, "number", "trade_fee", fixed=0),
    ColumnConfig("gas_fees_paid", 8, "number", "gas_fee", fixed=0),
    ColumnConfig("max_drawdown", 8, "number", "max_dd%", fixed=3),
    ColumnConfig("max_gain", 9, "number", "max_gain%", fixed=3),
    ColumnConfig("impermanent_loss", 8, "number", "il%", fixed=3),
    ColumnConfig("asset_exposure", 9, "number", "exposure%", fixed=0),
    ColumnConfig("rebalancing_actions", 6, "string", "rebal"),
    ColumnConfig("notes", 10, "string", "notes"),
]


def format_timestamp(ts: Optional[int], granularity: str = "daily") -> str:
    """UTC date (daily) or date + hour (hourly) for a unix timestamp."""
    if ts is None:
        return ""
    dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M" if granularity == "hourly" else "%Y-%m-%d")


def _values(status: Any, granularity: str) -> List[Any]:
    values = []
    for col in COLUMNS:
        value = getattr(status, col.source)
        if col.name == "timestamp":
            value = format_timestamp(value, granularity)
        values.append("" if value is None else value)
    return values


def console_header() -> str:
    """Header row plus a dashed underline."""
    header = " | ".join(col.header_console.ljust(col.pad) for col in COLUMNS)
    return f"{header}\n{'-' * len(header)}"


def format_console_row(status: Any, granularity: str = "daily") -> str:
    cells = []
    for col, value in zip(COLUMNS, _values(status, granularity)):
        if col.kind == "number" and isinstance(value, (int, float)) and col.fixed is not None:
            value = f"{value:.{col.fixed}f}"
        cells.append(str(value).ljust(col.pad))
    return " | ".join(cells)


def format_tsv_row(status: Any, granularity: str = "daily") -> str:
    cells = []
    for col, value in zip(COLUMNS, _values(status, granularity)):
        if col.kind == "number" and isinstance(value, (int, float)):
            digits = 6 if any(marker in col.name for marker in PRECISE_COLUMN_MARKERS) else 2
            value = f"{value:.{digits}f}"
        cells.append(str(value))
    return "\t".join(cells)


def clean_parameter(param: Any) -> str:
    return str(param).lower().replace("-", "").replace("%", "pct")


class ReportExporter:
    """Writes TSV reports under <base_dir>/<protocol>/."""

    def __init__(self, protocol: str, base_dir: Union[str, Path] = "exports"):
        self.protocol = protocol.lower()
        self.directory = Path(base_dir) / self.protocol

    def generate_filename(self, *parameters: Any, now: Optional[datetime] = None) -> str:
        stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d_%H%M%S")
        parts = [self.protocol] + [clean_parameter(p) for p in parameters] + [stamp]
        return "_".join(parts) + ".tsv"

    def export_tsv(
        self,
        filename: str,
        statuses: Iterable[Any],
        granularity: str = "daily",
    ) -> Path:
        """Write the rows and return the file path."""
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / filename
        lines = ["\t".join(col.name for col in COLUMNS)]
        lines.extend(format_tsv_row(s, granularity) for s in statuses)
        path.write_text("\n".join(lines), encoding="utf-8")
        return path
