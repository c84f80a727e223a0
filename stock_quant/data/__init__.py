from .models import (
    PriceBar,
    IndicatorBar,
    FundamentalReport,
    is_oldest_first,
    ensure_oldest_first,
    bars_from_frame,
    bars_to_frame,
    load_price_csv,
)
