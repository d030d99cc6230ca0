"""
运费计算
按目的地划分区域（本土 / 岛屿 / 欧盟 / 国际），按重量、尺寸和订单金额给出可选配送方式
"""

import math
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional


EU_COUNTRIES = {
    "AT", "BE", "BG", "HR", "CY", "CZ", "DK", "EE", "FI", "FR", "DE", "GR", "HU",
    "IE", "IT", "LV", "LT", "LU", "MT", "NL", "PL", "RO", "SK", "SI", "ES", "SE",
}
ISLAND_REGIONS = {"açores", "acores", "azores", "madeira"}

DEFAULT_ITEM_WEIGHT = 0.5  # kg
DEFAULT_DIMENSIONS = (20.0, 15.0, 5.0)  # cm

HEAVY_THRESHOLD_KG = 10.0
HEAVY_STEP_KG = 5.0
HEAVY_STEP_FEE = Decimal("2.50")
OVERSIZE_THRESHOLD_CM = 100.0
OVERSIZE_FEE = Decimal("10.00")


class ShippingError(Exception):
    """没有可用的配送方式"""


@dataclass
class ShippingRate:
    type: str
    name: str
    price: Decimal
    estimated_days: str
    max_weight: float
    min_amount: Optional[Decimal] = None


@dataclass
class ShippingZone:
    code: str
    name: str
    rates: List[ShippingRate] = field(default_factory=list)


SHIPPING_ZONES: Dict[str, ShippingZone] = {
    "DOMESTIC": ShippingZone("DOMESTIC", "Portugal Continental", [
        ShippingRate("STANDARD", "Envio Normal", Decimal("3.99"), "2-3", 20),
        ShippingRate("EXPRESS", "Envio Expresso", Decimal("6.99"), "1-2", 20),
        ShippingRate("FREE", "Envio Grátis", Decimal("0.00"), "3-5", 20, min_amount=Decimal("50.00")),
    ]),
    "ISLANDS": ShippingZone("ISLANDS", "Açores e Madeira", [
        ShippingRate("STANDARD", "Envio Normal", Decimal("8.99"), "3-5", 15),
        ShippingRate("EXPRESS", "Envio Expresso", Decimal("12.99"), "2-3", 15),
    ]),
    "EU": ShippingZone("EU", "União Europeia", [
        ShippingRate("STANDARD", "Envio Normal", Decimal("12.99"), "5-7", 10),
        ShippingRate("EXPRESS", "Envio Expresso", Decimal("19.99"), "3-4", 10),
    ]),
    "INTERNATIONAL": ShippingZone("INTERNATIONAL", "Internacional", [
        ShippingRate("STANDARD", "Envio Normal", Decimal("24.99"), "7-14", 5),
        ShippingRate("EXPRESS", "Envio Expresso", Decimal("39.99"), "4-7", 5),
    ]),
}


@dataclass
class ShippingItem:
    quantity: int = 1
    weight: Optional[float] = None  # 单件重量 kg
    length: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None


def _money(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def determine_zone(country: str, state: Optional[str] = None, postal_code: Optional[str] = None) -> str:
    """根据国家/地区判断配送区域"""
    country = (country or "").strip().upper()
    if country == "PT":
        if state and state.strip().lower() in ISLAND_REGIONS:
            return "ISLANDS"
        # 葡萄牙 9xxx 邮编为岛屿
        if postal_code and postal_code.strip().startswith("9"):
            return "ISLANDS"
        return "DOMESTIC"
    if country in EU_COUNTRIES:
        return "EU"
    return "INTERNATIONAL"


def calculate_package(items: List[ShippingItem]) -> Dict[str, float]:
    """汇总包裹重量和尺寸

    体积换算为立方体边长；最大边长取单件最大边与立方体边长的较大者
    """
    total_weight = 0.0
    total_volume = 0.0
    largest_dimension = 0.0
    for item in items:
        quantity = max(item.quantity or 1, 1)
        weight = item.weight if item.weight is not None else DEFAULT_ITEM_WEIGHT
        length = item.length or DEFAULT_DIMENSIONS[0]
        width = item.width or DEFAULT_DIMENSIONS[1]
        height = item.height or DEFAULT_DIMENSIONS[2]

        total_weight += weight * quantity
        total_volume += length * width * height * quantity
        largest_dimension = max(largest_dimension, length, width, height)

    cube_side = math.ceil(total_volume ** (1 / 3)) if total_volume > 0 else 0
    return {
        "weight": round(total_weight, 3),
        "volume": round(total_volume, 2),
        "cube_side": float(cube_side),
        "largest_dimension": max(largest_dimension, float(cube_side)),
    }


def calculate_surcharge(weight: float, largest_dimension: float) -> Decimal:
    surcharge = Decimal("0.00")
    if weight > HEAVY_THRESHOLD_KG:
        steps = math.ceil((weight - HEAVY_THRESHOLD_KG) / HEAVY_STEP_KG)
        surcharge += HEAVY_STEP_FEE * steps
    if largest_dimension > OVERSIZE_THRESHOLD_CM:
        surcharge += OVERSIZE_FEE
    return surcharge


def calculate_shipping_options(
    country: str,
    items: List[ShippingItem],
    subtotal: Decimal,
    state: Optional[str] = None,
    postal_code: Optional[str] = None) -> Dict:
    """计算可选配送方式（按价格升序）

    免运费选项不叠加附加费；没有任何可用选项时抛出 ShippingError
    """
    zone_code = determine_zone(country, state, postal_code)
    zone = SHIPPING_ZONES[zone_code]
    package = calculate_package(items)
    surcharge = calculate_surcharge(package["weight"], package["largest_dimension"])
    subtotal = Decimal(str(subtotal or 0))

    options = []
    for rate in zone.rates:
        if package["weight"] > rate.max_weight:
            continue
        if rate.min_amount is not None and subtotal < rate.min_amount:
            continue
        price = rate.price if rate.type == "FREE" else rate.price + surcharge
        options.append({
            "id": f"{zone_code}_{rate.type}".lower(),
            "type": rate.type,
            "name": rate.name,
            "price": float(_money(price)),
            "estimated_days": rate.estimated_days,
            "currency": "EUR",
        })

    if not options:
        raise ShippingError(
            f"该订单重量 {package['weight']}kg 超出 {zone.name} 的配送上限"
        )

    options.sort(key=lambda option: option["price"])
    return {
        "zone": zone_code,
        "zone_name": zone.name,
        "package": package,
        "surcharge": float(_money(surcharge)),
        "options": options,
        "currency": "EUR",
    }


def find_option(result: Dict, option_id: str) -> Optional[Dict]:
    for option in result.get("options", []):
        if option["id"] == option_id or option["type"] == option_id:
            return option
    return None


def describe_zones() -> List[Dict]:
    """区域与费率表（GET 接口展示用）"""
    zones = []
    for zone in SHIPPING_ZONES.values():
        zones.append({
            "code": zone.code,
            "name": zone.name,
            "rates": [
                {
                    "type": rate.type,
                    "name": rate.name,
                    "price": float(rate.price),
                    "estimated_days": rate.estimated_days,
                    "max_weight": rate.max_weight,
                    "min_amount": float(rate.min_amount) if rate.min_amount is not None else None,
                }
                for rate in zone.rates
            ],
        })
    return zones
