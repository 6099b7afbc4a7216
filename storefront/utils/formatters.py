from storefront.config import Settings, settings


def money(v: float, cfg: Settings = settings) -> str:
    return f"{cfg.currency_symbol}{v:.{cfg.decimals}f}"


def discount_label(discount: float, is_percentage: bool, cfg: Settings = settings) -> str:
    if is_percentage:
        return f"{discount:g}% off your order"
    return f"{money(discount, cfg)} off your order"
